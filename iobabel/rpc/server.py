"""
iobabel JSON-RPC Dispatcher

Routes Ethereum JSON-RPC envelopes to registered handlers:
- Method registration and namespacing
- Batch requests, processed in order, one element at a time
- Fail-silent envelope validation
- Per-call error isolation and instrumentation
- Shared by the HTTP and WebSocket transports

Wire contract:
- a request missing ``id`` or ``method`` (or ``jsonrpc`` over HTTP) is
  dropped from the output and only counted
- an unknown or explicitly unsupported method still gets an envelope,
  without a ``result`` key
- a failing handler answers ``{"result": {"error": {"message": ...}}}``
"""

import json
import time
from dataclasses import dataclass
from enum import IntEnum
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

from ..logger import get_logger
from ..metrics.collector import INVALID_REQUEST_LABEL, UNKNOWN_METHOD_LABEL, MetricsCollector

logger = get_logger(__name__)


class RPCErrorCode(IntEnum):
    """Standard JSON-RPC 2.0 error codes."""

    # Standard errors
    PARSE_ERROR = -32700
    INVALID_REQUEST = -32600
    METHOD_NOT_FOUND = -32601
    INVALID_PARAMS = -32602
    INTERNAL_ERROR = -32603

    # Server errors (-32000 to -32099)
    SERVER_ERROR = -32000
    RESOURCE_NOT_FOUND = -32001
    RESOURCE_UNAVAILABLE = -32002
    TRANSACTION_REJECTED = -32003
    METHOD_NOT_SUPPORTED = -32004
    LIMIT_EXCEEDED = -32005


@dataclass
class RPCError(Exception):
    """JSON-RPC error raised by handlers."""

    code: int
    message: str
    data: Optional[Any] = None

    def __str__(self) -> str:
        return self.message

    def to_dict(self) -> dict:
        result = {
            "code": int(self.code),
            "message": self.message,
        }
        if self.data is not None:
            result["data"] = self.data
        return result


@dataclass
class RPCRequest:
    """JSON-RPC request."""

    jsonrpc: Optional[str]
    method: str
    params: Union[List, Dict, None]
    id: Union[str, int]

    @classmethod
    def from_dict(cls, data: dict) -> "RPCRequest":
        return cls(
            jsonrpc=data.get("jsonrpc"),
            method=data.get("method", ""),
            params=data.get("params"),
            id=data.get("id"),
        )

    @staticmethod
    def is_valid(data: Any, require_version: bool = True) -> bool:
        """Envelope gate: ``id`` and ``method`` present, plus ``jsonrpc`` over HTTP."""
        if not isinstance(data, dict):
            return False
        if data.get("id") is None:
            return False
        method = data.get("method")
        if not isinstance(method, str) or not method:
            return False
        if require_version and not data.get("jsonrpc"):
            return False
        return True


@dataclass
class RPCResponse:
    """JSON-RPC response. ``has_result=False`` omits the ``result`` key."""

    id: Union[str, int, None] = None
    jsonrpc: str = "2.0"
    result: Optional[Any] = None
    has_result: bool = True

    def to_dict(self) -> dict:
        response = {"id": self.id, "jsonrpc": self.jsonrpc}
        if self.has_result:
            response["result"] = self.result
        return response

    def to_json(self) -> str:
        return json.dumps(self.to_dict())


# Type for RPC method handlers
RPCMethod = Callable[..., Any]


class RPCModule:
    """
    Base class for RPC modules.

    Subclass this to create method namespaces like eth_, net_, etc.
    """

    # Namespace prefix (e.g., "eth", "net")
    namespace: str = ""

    def __init__(self, context: Any = None):
        """
        Initialize module with optional context.

        Args:
            context: GatewayContext (chain client, filters, subscriptions)
        """
        self.context = context

    def get_methods(self) -> Dict[str, RPCMethod]:
        """
        Get all ``@rpc_method`` handlers in this module.

        Returns:
            Dict mapping wire method names to callables
        """
        methods = {}
        for name in dir(self):
            if name.startswith("_"):
                continue
            attr = getattr(self, name)
            if callable(attr) and hasattr(attr, "__rpc_method__"):
                full_name = f"{self.namespace}_{name}" if self.namespace else name
                methods[full_name] = attr
        return methods


def rpc_method(func: Optional[RPCMethod] = None, *, connection: bool = False):
    """
    Decorator to mark a method as an RPC endpoint.

    Usage:
        @rpc_method
        async def blockNumber(self) -> str:
            ...

        @rpc_method(connection=True)
        async def subscribe(self, sub_type, filter_params=None, connection=None):
            ...

    Handlers marked with ``connection=True`` receive the caller's
    WebSocket connection (or ``None`` over HTTP) as ``connection``.
    """
    def mark(f: RPCMethod) -> RPCMethod:
        f.__rpc_method__ = True
        f.__rpc_connection__ = connection
        return f

    if func is None:
        return mark
    return mark(func)


class RPCServer:
    """
    JSON-RPC method table and dispatcher.

    The table is built at start-up and only read while serving.
    Can be used with HTTP or WebSocket transports.
    """

    def __init__(self, metrics: Optional[MetricsCollector] = None):
        # None marks a method that is known but deliberately unsupported
        self._methods: Dict[str, Optional[RPCMethod]] = {}
        self._modules: Dict[str, RPCModule] = {}
        self.metrics = metrics

    def register_method(self, name: str, handler: Optional[RPCMethod]):
        """
        Register a single RPC method.

        Args:
            name: Method name (e.g., "eth_blockNumber")
            handler: Async function to handle the method, or None if unsupported
        """
        self._methods[name] = handler
        logger.debug(f"Registered RPC method: {name}")

    def register_module(self, module: RPCModule):
        """
        Register an RPC module.

        Args:
            module: RPCModule instance
        """
        methods = module.get_methods()
        self._methods.update(methods)
        self._modules[module.namespace] = module
        logger.info(f"Registered RPC module: {module.namespace} ({len(methods)} methods)")

    def register_unsupported(self, names: Iterable[str]):
        """Register method names that answer with the unsupported envelope."""
        names = list(names)
        for name in names:
            self._methods[name] = None
        logger.info(f"Registered {len(names)} unsupported methods")

    def unregister_module(self, namespace: str):
        """
        Unregister an RPC module.

        Args:
            namespace: Module namespace to remove
        """
        if namespace in self._modules:
            module = self._modules.pop(namespace)
            for name in module.get_methods():
                self._methods.pop(name, None)
            logger.info(f"Unregistered RPC module: {namespace}")

    def get_methods(self) -> List[str]:
        """Get list of registered method names, supported or not."""
        return list(self._methods.keys())

    def is_supported(self, name: str) -> bool:
        return self._methods.get(name) is not None

    # ── Instrumentation ─────────────────────────────────────────────

    def _count(self, label: str) -> None:
        if self.metrics is not None:
            self.metrics.increment_method_counter(label)

    def _drop_invalid(self, data: Any) -> None:
        self._count(INVALID_REQUEST_LABEL)
        logger.warning(f"Dropped invalid JSON-RPC request: {str(data)[:200]}")

    # ── Dispatch ────────────────────────────────────────────────────

    async def handle_request(
        self,
        data: Union[str, bytes, dict, list],
        connection: Any = None,
        require_version: bool = True,
    ) -> Optional[str]:
        """
        Handle a raw JSON-RPC body.

        Args:
            data: Request body (JSON text or already-parsed JSON)
            connection: WebSocket connection the body arrived on, if any
            require_version: Require ``jsonrpc`` on every request (HTTP)

        Returns:
            JSON response string, or None if nothing is to be sent
        """
        if isinstance(data, (str, bytes)):
            try:
                parsed = json.loads(data)
            except (ValueError, UnicodeDecodeError):
                self._drop_invalid(data)
                return None
        else:
            parsed = data

        result = await self.dispatch(parsed, connection=connection, require_version=require_version)
        if result is None:
            return None
        return json.dumps(result)

    async def dispatch(
        self,
        body: Any,
        connection: Any = None,
        require_version: bool = True,
    ) -> Union[dict, list, None]:
        """
        Dispatch a parsed body.

        A list is handled element by element, in order; invalid elements
        are omitted, so the response list may be shorter than the batch.
        """
        if isinstance(body, list):
            responses = []
            for item in body:
                response = await self._handle_single(item, connection, require_version)
                if response is not None:
                    responses.append(response)
            return responses

        return await self._handle_single(body, connection, require_version)

    async def _handle_single(self, data: Any, connection: Any, require_version: bool) -> Optional[dict]:
        """Handle a single request and return its response dict."""
        if not RPCRequest.is_valid(data, require_version):
            self._drop_invalid(data)
            return None

        request = RPCRequest.from_dict(data)
        # Only table entries get their own series; the table is fixed at start-up
        self._count(request.method if request.method in self._methods else UNKNOWN_METHOD_LABEL)

        handler = self._methods.get(request.method)
        if handler is None:
            known = request.method in self._methods
            logger.warning(f"{'Unsupported' if known else 'Unknown'} RPC method: {request.method}")
            if self.metrics is not None:
                self.metrics.rpc_unsupported_total.inc()
            return RPCResponse(id=request.id, has_result=False).to_dict()

        start_time = time.time()
        try:
            result = await self._invoke(handler, request.params, connection)
        except Exception as e:
            logger.error(f"RPC {request.method} failed: {e} params={request.params!r}")
            if self.metrics is not None:
                self.metrics.rpc_errors_total.inc()
            result = {"error": {"message": str(e)}}
        finally:
            if self.metrics is not None:
                self.metrics.rpc_latency.observe(time.time() - start_time)

        return RPCResponse(id=request.id, result=result).to_dict()

    @staticmethod
    async def _invoke(handler: RPCMethod, params: Any, connection: Any) -> Any:
        kwargs = {}
        if getattr(handler, "__rpc_connection__", False):
            kwargs["connection"] = connection

        if params is None:
            return await handler(**kwargs)
        if isinstance(params, list):
            return await handler(*params, **kwargs)
        if isinstance(params, dict):
            return await handler(**params, **kwargs)
        raise RPCError(RPCErrorCode.INVALID_PARAMS, "Invalid params type")
