"""
Public Origin Resolution - Zero Configuration Required

Share links need an absolute origin. Production deployments set BASE_URL;
for local demos a Cloudflare Quick Tunnel (via `pycloudflared`, which
auto-downloads the cloudflared binary) exposes the server publicly.
"""

import logging
from screencast.core.config import settings

logger = logging.getLogger(__name__)


class TunnelManager:
    """Manages the public base URL and the optional Cloudflare Quick Tunnel."""

    _tunnel = None
    _public_url: str = None

    @classmethod
    def start(cls, config=None, port: int = None) -> str:
        """
        Resolves the public base URL. Returns it (never None).

        BASE_URL from the environment wins. Otherwise, when ENABLE_TUNNEL is set,
        a quick tunnel is started; if that fails we fall back to localhost so
        share links still work on the same machine.
        """
        config = config or settings
        port = port or config.API_PORT

        if config.BASE_URL:
            logger.info(f"Base URL configured via ENV: {config.BASE_URL}")
            return cls.get_base_url(config)

        if config.ENABLE_TUNNEL:
            try:
                from pycloudflared import try_cloudflare

                logger.info(f"Starting Cloudflare tunnel for port {port}...")
                cls._tunnel = try_cloudflare(port=port)
                cls._public_url = cls._tunnel.tunnel

                if cls._public_url:
                    logger.info(f"Cloudflare Tunnel: {cls._public_url} -> localhost:{port}")
                else:
                    logger.error("Failed to get tunnel URL")
            except ImportError:
                logger.error("pycloudflared package not installed. Run: pip install pycloudflared")
            except Exception as e:
                logger.error(f"Tunnel failed: {e}")

        if not cls._public_url:
            cls._public_url = f"http://localhost:{port}"
            logger.info(f"Share links will use {cls._public_url}")
        return cls.get_base_url(config)

    @classmethod
    def stop(cls):
        """Stops the current tunnel."""
        if cls._tunnel:
            try:
                # pycloudflared tunnel objects have a terminate method
                if hasattr(cls._tunnel, 'terminate'):
                    cls._tunnel.terminate()
                elif hasattr(cls._tunnel, 'kill'):
                    cls._tunnel.kill()
            except Exception as e:
                logger.debug(f"Error stopping tunnel: {e}")
            finally:
                cls._tunnel = None
        cls._public_url = None

    @classmethod
    def is_running(cls) -> bool:
        """Check if tunnel is running."""
        return cls._tunnel is not None and cls._public_url is not None

    @classmethod
    def get_base_url(cls, config=None) -> str:
        """Current public origin without a trailing slash."""
        config = config or settings
        url = config.BASE_URL or cls._public_url or f"http://localhost:{config.API_PORT}"
        return url.rstrip("/")
