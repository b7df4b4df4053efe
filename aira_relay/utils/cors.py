# cors.py
from fastapi import Response
from fastapi.middleware.cors import CORSMiddleware
from starlette.datastructures import Headers


CORS_ALLOW_HEADERS = ["authorization", "x-client-info", "apikey", "content-type"]


class RelayCORSMiddleware(CORSMiddleware):
    """预检请求返回空响应体，其余行为与 CORSMiddleware 一致"""

    def preflight_response(self, request_headers: Headers) -> Response:
        response = super().preflight_response(request_headers)
        headers = {
            key: value for key, value in response.headers.items()
            if key not in ("content-length", "content-type")
        }
        return Response(status_code=response.status_code, headers=headers)


def add_cors(app):
    app.add_middleware(
        RelayCORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=CORS_ALLOW_HEADERS,
    )
