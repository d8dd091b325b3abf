"""
Chain gateway for the proxied contract.
"""

import asyncio
import json
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Union, TYPE_CHECKING

import aiohttp
from web3 import AsyncWeb3, AsyncHTTPProvider

from shared.logging import get_logger
from shared.errors import ConfigurationError, NotFound, ProxyException, UpstreamCallFailed, ValidationError
from shared.retry import retry_on_exception, RetryConfig, RetryError

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector

Argument = Union[bool, str]
Invoke = Callable[[], Awaitable[str]]

_READ_ONLY_MUTABILITY = {"view", "pure"}
_TRANSIENT_ERRORS = (aiohttp.ClientError, asyncio.TimeoutError, ConnectionError)

ERC20_ABI: List[Dict[str, Any]] = [
    {
        "constant": True,
        "inputs": [],
        "name": "symbol",
        "outputs": [{"name": "", "type": "string"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "constant": True,
        "inputs": [{"name": "account", "type": "address"}],
        "name": "balanceOf",
        "outputs": [{"name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function",
    },
]


def load_contract_abi(path: Union[str, Path]) -> List[Dict[str, Any]]:
    """Read an ABI from a JSON file holding either the ABI list or a build artifact with an ``abi`` key."""
    abi_path = Path(path)
    try:
        payload = json.loads(abi_path.read_text())
    except (OSError, ValueError) as e:
        raise ConfigurationError(f"Cannot load contract ABI from {abi_path}: {e}")

    if isinstance(payload, dict):
        payload = payload.get("abi")
    if not isinstance(payload, list):
        raise ConfigurationError(f"Contract ABI in {abi_path} is not a list")
    return payload


def render_result(value: Any) -> str:
    """Canonical string form of a decoded call result."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, (bytes, bytearray)):
        return "0x" + bytes(value).hex()
    if isinstance(value, str):
        return value
    if isinstance(value, (list, tuple)):
        return ",".join(render_result(item) for item in value)
    return str(value)


def _read_only_functions(abi: Sequence[Dict[str, Any]]) -> Dict[str, List[Dict[str, Any]]]:
    functions: Dict[str, List[Dict[str, Any]]] = {}
    for entry in abi:
        if entry.get("type", "function") != "function" or not entry.get("name"):
            continue
        if entry.get("stateMutability") in _READ_ONLY_MUTABILITY or entry.get("constant") is True:
            functions.setdefault(entry["name"], []).append(entry)
    return functions


class ContractGateway:
    """Read-only access to one contract over JSON-RPC.

    Only view/pure members found in the ABI can be called. Path arguments
    are coerced to the ABI input types here, before any request is sent.
    """

    def __init__(
        self,
        rpc_url: str,
        contract_address: str,
        abi: Sequence[Dict[str, Any]],
        *,
        chain_id: Optional[int] = None,
        timeout_seconds: float = 30.0,
        metrics: Optional["MetricsCollector"] = None,
        w3: Optional[AsyncWeb3] = None,
    ):
        if not AsyncWeb3.is_address(contract_address):
            raise ConfigurationError(f"Invalid contract address: {contract_address!r}")

        self.rpc_url = rpc_url
        self.chain_id = chain_id
        self.metrics = metrics
        self.logger = get_logger("proxy.contract_gateway")

        self.w3 = w3 or AsyncWeb3(
            AsyncHTTPProvider(
                rpc_url,
                request_kwargs={"timeout": aiohttp.ClientTimeout(total=timeout_seconds)},
            )
        )
        self.contract_address = AsyncWeb3.to_checksum_address(contract_address)
        self.contract = self.w3.eth.contract(address=self.contract_address, abi=list(abi))

        self._functions = _read_only_functions(abi)
        self._constants = {
            name for name, entries in self._functions.items()
            if any(not entry.get("inputs") for entry in entries)
        }

        self.retry_config = RetryConfig(
            max_attempts=3,
            base_delay=0.5,
            max_delay=5.0,
            exponential_base=2.0,
            jitter=True
        )

    # Allow-list

    def has_constant(self, name: str) -> bool:
        return name in self._constants

    def has_function(self, name: str) -> bool:
        return name in self._functions

    @property
    def constant_names(self) -> List[str]:
        return sorted(self._constants)

    @property
    def function_names(self) -> List[str]:
        return sorted(self._functions)

    def bind_constant(self, name: str) -> Invoke:
        """Return a zero-argument coroutine function reading constant ``name``."""
        if not self.has_constant(name):
            raise NotFound("Constant does not exist in the contract", details={"name": name, "available": self.constant_names})

        async def invoke() -> str:
            return await self._call_member(name, [])

        return invoke

    def bind_function(self, name: str, args: Sequence[Argument]) -> Invoke:
        """Return a zero-argument coroutine function calling ``name`` with ``args``.

        Raises:
            NotFound: ``name`` is not a read-only function of the contract.
            ValidationError: no overload takes ``len(args)`` inputs, or an
                argument cannot be converted to its input type.
        """
        if not self.has_function(name):
            raise NotFound("Function does not exist in the contract", details={"name": name, "available": self.function_names})

        candidates = [entry for entry in self._functions[name] if len(entry.get("inputs", [])) == len(args)]
        if not candidates:
            raise ValidationError(
                f"{name} does not take {len(args)} argument(s)",
                details={"name": name, "arity": len(args)},
            )

        errors = []
        for entry in candidates:
            try:
                call_args = [_coerce(arg, abi_input) for arg, abi_input in zip(args, entry.get("inputs", []))]
            except ValidationError as e:
                errors.append(e.message)
                continue

            async def invoke(call_args=call_args) -> str:
                return await self._call_member(name, call_args)

            return invoke

        raise ValidationError(f"Invalid arguments for {name}: {'; '.join(errors)}", details={"name": name})

    # Chain reads

    async def get_block_height(self) -> int:
        """Current block number of the connected chain."""
        return await self._guarded("block_number", self._fetch_block_number)

    async def token_symbol(self, token_address: str) -> str:
        """``symbol()`` of an arbitrary ERC-20 token, uncached."""
        token = self._erc20(token_address)
        return await self._guarded("erc20_symbol", self._call_function, token.functions.symbol())

    async def token_balance(self, token_address: str, account: str) -> str:
        """``balanceOf(account)`` of an arbitrary ERC-20 token as a decimal string, uncached."""
        token = self._erc20(token_address)
        holder = _coerce(account, {"name": "account", "type": "address"})
        return await self._guarded("erc20_balance", self._call_function, token.functions.balanceOf(holder))

    async def check_health(self) -> str:
        """Return ``ok`` when the endpoint answers and serves the configured chain."""
        try:
            connected_chain = await self.w3.eth.chain_id
        except Exception as e:
            self.logger.warning("Chain endpoint health check failed", error=str(e))
            return "error"

        if self.chain_id is not None and connected_chain != self.chain_id:
            self.logger.warning("Connected to unexpected chain", expected=self.chain_id, actual=connected_chain)
            return "wrong_chain"
        return "ok"

    def _erc20(self, token_address: str):
        if not AsyncWeb3.is_address(token_address):
            raise ValidationError("Invalid token address", details={"address": token_address})
        return self.w3.eth.contract(address=AsyncWeb3.to_checksum_address(token_address), abi=ERC20_ABI)

    async def _call_member(self, name: str, call_args: List[Any]) -> str:
        function = self.contract.functions[name](*call_args)
        return await self._guarded(f"call:{name}", self._call_function, function)

    async def _guarded(self, operation: str, func, *args) -> Any:
        """Run a chain read with retries, mapping failures to ``UpstreamCallFailed``."""
        retrying = retry_on_exception(_TRANSIENT_ERRORS, config=self.retry_config, operation=operation)(func)
        try:
            if self.metrics:
                with self.metrics.time_operation("gateway_call_duration_seconds", operation=operation.split(":")[0]):
                    return await retrying(*args)
            return await retrying(*args)
        except ProxyException:
            raise
        except RetryError as e:
            self.logger.error("Chain endpoint unreachable", operation=operation, error=str(e.last_exception))
            raise UpstreamCallFailed(str(e.last_exception) or "Chain endpoint unreachable", details={"operation": operation})
        except Exception as e:
            self.logger.warning("Chain call failed", operation=operation, error=str(e))
            raise UpstreamCallFailed(str(e) or type(e).__name__, details={"operation": operation})

    async def _fetch_block_number(self) -> int:
        return int(await self.w3.eth.block_number)

    async def _call_function(self, function) -> str:
        return render_result(await function.call())


def _coerce(arg: Argument, abi_input: Dict[str, Any]) -> Any:
    """Convert a normalized path argument to the Python value web3 expects for ``abi_input``."""
    abi_type = abi_input.get("type", "")
    label = abi_input.get("name") or abi_type

    if abi_type.endswith("]"):
        if isinstance(arg, bool):
            raise ValidationError(f"{label}: expected a JSON array")
        try:
            items = json.loads(arg)
        except ValueError:
            raise ValidationError(f"{label}: expected a JSON array")
        if not isinstance(items, list):
            raise ValidationError(f"{label}: expected a JSON array")
        item_input = {"name": label, "type": abi_type[:abi_type.rindex("[")]}
        return [_coerce(_as_argument(item), item_input) for item in items]

    if abi_type == "bool":
        if not isinstance(arg, bool):
            raise ValidationError(f"{label}: expected true or false")
        return arg

    if isinstance(arg, bool):
        if abi_type == "string":
            return "true" if arg else "false"
        raise ValidationError(f"{label}: boolean given for {abi_type}")

    if abi_type.startswith(("uint", "int")):
        try:
            value = int(arg, 16) if arg.lower().startswith("0x") else int(arg, 10)
        except ValueError:
            raise ValidationError(f"{label}: expected an integer, got {arg!r}")
        if abi_type.startswith("uint") and value < 0:
            raise ValidationError(f"{label}: expected a non-negative integer")
        return value

    if abi_type == "address":
        if not AsyncWeb3.is_address(arg):
            raise ValidationError(f"{label}: invalid address {arg!r}")
        return AsyncWeb3.to_checksum_address(arg)

    if abi_type.startswith("bytes"):
        hex_value = arg[2:] if arg.lower().startswith("0x") else arg
        try:
            return bytes.fromhex(hex_value)
        except ValueError:
            raise ValidationError(f"{label}: expected hex bytes")

    if abi_type == "string":
        return arg

    raise ValidationError(f"{label}: unsupported input type {abi_type}")


def _as_argument(item: Any) -> Argument:
    if isinstance(item, bool):
        return item
    return str(item)
