from app.core.settings import settings
from app.tools.dispatcher import ToolDispatcher
from app.tools.market_data import build_market_registry
from orats_client import OratsClient


class Container:
    def __init__(self):
        # Upstream
        self.orats_client = OratsClient(
            base_url=settings.ORATS_BASE_URL,
            timeout=settings.ORATS_HTTP_TIMEOUT_SEC,
        )

        # Tools
        self.tool_registry = build_market_registry()
        self.dispatcher = ToolDispatcher(self.tool_registry, self.orats_client)

global_container = Container()
