import asyncio
import os
import sys

# Ensure imports work when run from the repository root
sys.path.append(os.getcwd())

import structlog

from src.config import get_payment_config
from src.ledger.resolver import EndpointResolver
from src.payments.errors import NoEndpointAvailableError

logger = structlog.get_logger()


async def check_rpc_endpoints() -> int:
    config = get_payment_config()
    print(f"Probing {len(config.rpc_endpoints)} RPC endpoint(s) (timeout {config.rpc_probe_timeout}s)...")

    resolver = EndpointResolver.from_urls(
        config.rpc_endpoints,
        probe_timeout=config.rpc_probe_timeout,
        request_timeout=config.rpc_request_timeout,
        commitment=config.commitment,
    )
    try:
        # 1. Probe every endpoint individually
        healthy = 0
        for endpoint in resolver.endpoints:
            ok = await resolver.probe(endpoint)
            healthy += ok
            print(f"  {'OK  ' if ok else 'FAIL'} {endpoint.url}")

        # 2. Resolve the endpoint the payment flow would use
        try:
            selected = await resolver.resolve()
        except NoEndpointAvailableError as e:
            print(f"FAILED: {e}")
            return 1

        print(f"SUCCESS: {healthy}/{len(resolver.endpoints)} healthy, payments would use {selected.url}")
        return 0
    finally:
        await resolver.aclose()


if __name__ == "__main__":
    sys.exit(asyncio.run(check_rpc_endpoints()))
