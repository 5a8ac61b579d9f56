from .client import UpstreamClient, build_user_agent

__all__ = ["UpstreamClient", "build_user_agent"]
