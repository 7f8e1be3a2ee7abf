"""Ballast MCPサーバーのコマンドラインエントリポイント。"""

if __name__ == "__main__":
    import sys

    import uvicorn
    from loguru import logger
    from starlette.middleware import Middleware

    from ballast.config import ServerConfig
    from ballast.middleware import TokenAuthMiddleware
    from ballast.server import create_server

    config = ServerConfig()
    logger.remove()
    logger.add(sys.stderr, level=config.log_level)
    mcp = create_server(config)
    app = mcp.http_app(
        transport="streamable-http",
        middleware=[Middleware(TokenAuthMiddleware, url_token=config.url_token)],
    )
    uvicorn.run(app, host=config.host, port=config.port, log_level=config.log_level.lower())
