"""
Contract read proxy service.

The proxy fronts read-only calls to a single smart contract:
- Constants and function calls are served stale-while-revalidate from the
  cache store, refreshed in the background after each response.
- The current block height is polled on a fixed interval.

Structure:
- app.main: FastAPI app, routes and lifecycle wiring.
- app.adapters: chain gateway (web3 JSON-RPC).
- app.caching: key normalization, resolver and block poller.
- app.persistence: cache store backends (PostgreSQL, in-memory).
"""
