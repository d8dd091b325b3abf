"""
Outbound adapters for the proxy.
"""

from .contract_gateway import ContractGateway, load_contract_abi, render_result

__all__ = ["ContractGateway", "load_contract_abi", "render_result"]
