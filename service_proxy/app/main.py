"""
Contract read proxy service.
"""

from typing import Dict, Optional

from fastapi import BackgroundTasks

from shared.base_service import BaseService
from shared.config import ServiceConfig
from service_proxy.app.adapters.contract_gateway import ContractGateway, load_contract_abi
from service_proxy.app.caching.block_poller import BlockHeightPoller
from service_proxy.app.caching.keys import build_key, constant_key, split_path_arguments
from service_proxy.app.caching.resolver import StaleWhileRevalidateResolver
from service_proxy.app.persistence import RecordKind, create_store


class ProxyService(BaseService):
    """Caching read proxy in front of a single contract.

    Collaborators are built from configuration unless passed in explicitly.
    """

    def __init__(
        self,
        config: Optional[ServiceConfig] = None,
        *,
        gateway=None,
        store=None,
        resolver: Optional[StaleWhileRevalidateResolver] = None,
        block_poller: Optional[BlockHeightPoller] = None,
    ):
        super().__init__("proxy", 3000, config)

        self.store = store or create_store(self.config.store_backend, self.config.postgres_dsn)
        self.gateway = gateway or ContractGateway(
            self.config.rpc_url,
            self.config.contract_address,
            load_contract_abi(self.config.contract_abi_path),
            chain_id=self.config.chain_id,
            timeout_seconds=self.config.rpc_timeout_seconds,
            metrics=self.metrics,
        )
        self.resolver = resolver or StaleWhileRevalidateResolver(
            self.store,
            metrics=self.metrics,
            refresh_after_miss=self.config.refresh_after_miss,
        )
        self.block_poller = block_poller or BlockHeightPoller(
            self.gateway,
            self.store,
            interval_seconds=self.config.block_poll_interval_seconds,
            metrics=self.metrics,
        )
        self.app.state.proxy_service = self

        @self.app.on_event("startup")
        async def _startup():
            await self.store.start()
            await self.block_poller.start()

        @self.app.on_event("shutdown")
        async def _shutdown():
            await self.block_poller.stop()
            await self.resolver.drain()
            await self.store.stop()

        self._setup_proxy_routes()

    def _get(self, path: str):
        """Register a GET route that also answers ``path/`` without a redirect."""

        def decorator(func):
            self.app.get(path + "/", include_in_schema=False)(func)
            return self.app.get(path)(func)

        return decorator

    def _setup_proxy_routes(self):
        """Set up contract read routes."""

        @self._get("/v1/blockNumber")
        async def get_block_number():
            """Latest polled block height, or a live read before the first poll."""
            snapshot = await self.store.find_latest_block_snapshot()
            if snapshot is not None:
                return {"blockNumber": snapshot.height}

            height = await self.gateway.get_block_height()
            return {"blockNumber": height}

        @self._get("/v1/contractAddress")
        async def get_contract_address():
            """Address of the proxied contract."""
            return {"contractAddress": self.config.contract_address}

        @self._get("/v1/constant/{constant_name}")
        async def get_constant(constant_name: str, background_tasks: BackgroundTasks):
            """Value of a zero-argument getter."""
            invoke = self.gateway.bind_constant(constant_name)
            value = await self.resolver.resolve(
                RecordKind.CONSTANT,
                constant_key(constant_name),
                invoke,
                background_tasks,
            )
            return {constant_name: value}

        @self.app.get("/v1/request/{function_name}")
        async def call_function_without_args(function_name: str, background_tasks: BackgroundTasks):
            """Result of a read-only function taking no path arguments."""
            return await self._call_function(function_name, "", background_tasks)

        @self.app.get("/v1/request/{function_name}/{raw_args:path}")
        async def call_function(function_name: str, raw_args: str, background_tasks: BackgroundTasks):
            """Result of a read-only function; each path segment is one positional argument."""
            return await self._call_function(function_name, raw_args, background_tasks)

        @self._get("/v1/erc20/{token_address}/symbol")
        async def get_token_symbol(token_address: str):
            """ERC-20 symbol, read straight from the chain."""
            return {"symbol": await self.gateway.token_symbol(token_address)}

        @self._get("/v1/erc20/{token_address}/balanceOf/{account}")
        async def get_token_balance(token_address: str, account: str):
            """ERC-20 balance, read straight from the chain."""
            return {"balance": await self.gateway.token_balance(token_address, account)}

    async def _call_function(self, function_name: str, raw_args: str, background_tasks: BackgroundTasks) -> Dict[str, str]:
        key, args = build_key(function_name, split_path_arguments(raw_args))
        invoke = self.gateway.bind_function(function_name, args)
        value = await self.resolver.resolve(RecordKind.FUNCTION_CALL, key, invoke, background_tasks)
        return {"result": value}

    async def _check_dependencies(self) -> Dict[str, str]:
        """Check store and chain endpoint."""
        return {
            "store": "ok" if await self.store.health_check() else "error",
            "chain": await self.gateway.check_health(),
        }


def create_app(config: Optional[ServiceConfig] = None, **components):
    """Create FastAPI application."""
    service = ProxyService(config, **components)
    return service.app


def main():
    """Run the proxy with configuration from the environment."""
    ProxyService().run()


if __name__ == "__main__":
    main()
