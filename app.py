import logging
from aiohttp import web

from config import HOST, PORT, CHANNELS_FILE
from services.hls_proxy import HLSProxy
from services.manifest_rewriter import PROXY_PATH
from routes.channels import channels_bp, CHANNELS_FILE_KEY

logger = logging.getLogger(__name__)


def create_app(proxy=None, channels_file=None):
    """Creates and configures the aiohttp application."""
    proxy = proxy or HLSProxy()

    app = web.Application()
    app[CHANNELS_FILE_KEY] = channels_file or CHANNELS_FILE

    app.router.add_get(PROXY_PATH, proxy.handle_proxy_request)
    app.router.add_route('OPTIONS', PROXY_PATH, proxy.handle_options)
    app.router.add_get('/api/info', proxy.handle_api_info)
    app.router.add_routes(channels_bp)

    async def cleanup_handler(app):
        await proxy.cleanup()
    app.on_cleanup.append(cleanup_handler)

    return app


def main():
    """Main function to start the server."""
    logger.info("🚀 Starting Live TV Stream Relay...")
    logger.info(f"📡 Server available at: http://{HOST}:{PORT}")
    logger.info(f"   • {PROXY_PATH}?url=<URL> - Stream relay")
    logger.info("   • /api/channels - Channel catalog")
    logger.info("   • /api/info - Server information")

    # Cancel the handler when the browser aborts, releasing the upstream connection
    web.run_app(create_app(), host=HOST, port=PORT, handler_cancellation=True)


if __name__ == '__main__':
    main()
