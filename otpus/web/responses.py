from aiohttp import web

from ..metrics import webhook_errors_total


def error_response(endpoint: str, status: int, message: str) -> web.Response:
    """JSON ошибка вида {"error": "..."} + счётчик по эндпоинту и коду."""
    webhook_errors_total.labels(endpoint=endpoint, code=str(status)).inc()
    return web.json_response({"error": message}, status=status)
