# backend/studyplanner/delivery.py
"""
How refresh tokens travel between client and server.

Web clients (``X-Client-Platform: web``) keep the refresh token in an HTTP-only cookie;
every other client receives it in the JSON body and sends it back in the body.
The strategy is chosen once per request by ``get_delivery`` and used by login,
refresh and logout alike.
"""

from typing import Optional

from fastapi import Header, Request, Response

from . import config

WEB_PLATFORM = "web"


def _secure_cookies() -> bool:
    return config.ENVIRONMENT == "production"


class TokenDelivery:
    def read_refresh_token(self, request: Request, body_token: Optional[str]) -> Optional[str]:
        raise NotImplementedError

    def deliver(self, response: Response, access_token: str, refresh_token: str) -> dict:
        """Attach the token pair to ``response`` and return the body fields to send."""
        raise NotImplementedError

    def clear(self, response: Response) -> None:
        pass


class CookieDelivery(TokenDelivery):
    def read_refresh_token(self, request, body_token):
        return request.cookies.get(config.REFRESH_COOKIE_NAME)

    def deliver(self, response, access_token, refresh_token):
        response.set_cookie(
            key=config.REFRESH_COOKIE_NAME,
            value=refresh_token,
            httponly=True,
            secure=_secure_cookies(),
            samesite="strict",
            max_age=config.REFRESH_TOKEN_EXPIRE_DAYS * 24 * 60 * 60,
            path="/",
        )
        return {"accessToken": access_token}

    def clear(self, response):
        response.delete_cookie(
            config.REFRESH_COOKIE_NAME,
            path="/",
            httponly=True,
            secure=_secure_cookies(),
            samesite="strict",
        )


class BodyDelivery(TokenDelivery):
    def read_refresh_token(self, request, body_token):
        return body_token

    def deliver(self, response, access_token, refresh_token):
        return {"accessToken": access_token, "refreshToken": refresh_token}


def get_delivery(x_client_platform: Optional[str] = Header(None)) -> TokenDelivery:
    if x_client_platform == WEB_PLATFORM:
        return CookieDelivery()
    return BodyDelivery()
