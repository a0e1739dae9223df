# src/credbridge/core/abi.py
"""Minimal contract ABIs used by the EVM adapters."""

ISSUER_ABI = [
    {
        "type": "event",
        "name": "CrossChainMessageEmitted",
        "inputs": [{"name": "sequence", "type": "uint64", "indexed": False}],
        "anonymous": False,
    },
    {
        "type": "event",
        "name": "LogCredentialIssued",
        "inputs": [
            {"name": "issuer", "type": "address", "indexed": True},
            {"name": "cid", "type": "string", "indexed": False},
            {"name": "cidHash", "type": "bytes32", "indexed": True},
        ],
        "anonymous": False,
    },
]

MIRROR_ABI = [
    {
        "type": "function",
        "name": "receiveAndVerifyVAA",
        "inputs": [{"internalType": "bytes", "name": "_vaa", "type": "bytes"}],
        "outputs": [],
        "stateMutability": "nonpayable",
    },
    {
        "type": "function",
        "name": "processedVAAs",
        "inputs": [{"internalType": "bytes32", "name": "", "type": "bytes32"}],
        "outputs": [{"internalType": "bool", "name": "", "type": "bool"}],
        "stateMutability": "view",
    },
]
