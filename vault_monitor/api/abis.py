"""
Minimal contract ABIs - only the functions and events the monitor reads.
"""

from typing import Dict, List

# AMM factory. Only `amm` is consumed; the tuple component names are positional.
AMM_FACTORY_ABI: List[dict] = [
    {
        "anonymous": False,
        "inputs": [
            {"indexed": True, "internalType": "address", "name": "amm", "type": "address"},
            {"indexed": True, "internalType": "bool", "name": "isPositive", "type": "bool"},
            {
                "indexed": False,
                "name": "createParams",
                "type": "tuple",
                "components": [
                    {"name": "p0", "type": "bytes16"},
                    {"name": "p1", "type": "string"},
                    {"name": "p2", "type": "string"},
                    {"name": "p3", "type": "address"},
                    {"name": "p4", "type": "address"},
                    {"name": "p5", "type": "uint32"},
                    {"name": "p6", "type": "uint64"},
                    {"name": "p7", "type": "uint256"},
                    {"name": "p8", "type": "bytes26"},
                    {"name": "p9", "type": "address"},
                ],
            },
            {
                "indexed": False,
                "name": "seedParams",
                "type": "tuple",
                "components": [
                    {"name": "p0", "type": "uint256"},
                    {"name": "p1", "type": "uint256"},
                    {"name": "p2", "type": "uint256"},
                    {"name": "p3", "type": "uint256"},
                    {"name": "p4", "type": "int256"},
                    {"name": "p5", "type": "uint256"},
                    {"name": "p6", "type": "uint256"},
                ],
            },
        ],
        "name": "AMMCreated",
        "type": "event",
    },
]


def _view(name: str, output_type: str, inputs: List[dict] = None) -> dict:
    return {
        "inputs": inputs or [],
        "name": name,
        "outputs": [{"internalType": output_type, "name": "", "type": output_type}],
        "stateMutability": "view",
        "type": "function",
    }


# Vault (AMM) contract
AMM_ABI: List[dict] = [
    _view("name", "string"),
    _view("symbol", "string"),
    _view("totalSupply", "uint256"),
    _view("totalSupplyCap", "uint256"),
    _view("MATURITY", "uint32"),
    _view("MARKET", "address"),
    _view("SELF_ACC", "bytes26"),
    {
        "anonymous": False,
        "inputs": [
            {"indexed": False, "internalType": "uint256", "name": "newTotalSupplyCap", "type": "uint256"},
        ],
        "name": "TotalSupplyCapUpdated",
        "type": "event",
    },
]

# Paired market
MARKET_ABI: List[dict] = [
    {
        "inputs": [],
        "name": "descriptor",
        "outputs": [
            {"internalType": "bool", "name": "isIsolatedOnly", "type": "bool"},
            {"internalType": "uint16", "name": "tokenId", "type": "uint16"},
            {"internalType": "uint24", "name": "marketId", "type": "uint24"},
            {"internalType": "uint32", "name": "maturity", "type": "uint32"},
            {"internalType": "uint8", "name": "tickStep", "type": "uint8"},
            {"internalType": "uint16", "name": "iTickThresh", "type": "uint16"},
            {"internalType": "uint32", "name": "latestFTime", "type": "uint32"},
        ],
        "stateMutability": "view",
        "type": "function",
    },
    _view("getLatestFTime", "uint32"),
]

# Market hub
MARKET_HUB_ABI: List[dict] = [
    _view("tokenIdToAddress", "address", [{"internalType": "uint16", "name": "tokenId", "type": "uint16"}]),
    _view("accCash", "int256", [{"internalType": "bytes26", "name": "acc", "type": "bytes26"}]),
]

ERC20_ABI: List[dict] = [
    _view("symbol", "string"),
    _view("decimals", "uint8"),
]

# Contract kind -> ABI, used by the chain client to build contract handles
CONTRACT_ABIS: Dict[str, List[dict]] = {
    "factory": AMM_FACTORY_ABI,
    "amm": AMM_ABI,
    "market": MARKET_ABI,
    "hub": MARKET_HUB_ABI,
    "erc20": ERC20_ABI,
}
