"""Study planner API: accounts, syllabus uploads and study plan queries."""
