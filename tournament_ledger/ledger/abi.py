"""
Contract ABIs consumed by the ledger layer.

Only the function, event and error signatures this package calls are listed.
"""


def _fn(name, inputs=(), outputs=(), mutability="nonpayable"):
    return {
        "type": "function",
        "name": name,
        "inputs": [{"name": n, "type": t, "internalType": t} for n, t in inputs],
        "outputs": [{"name": n, "type": t, "internalType": t} for n, t in outputs],
        "stateMutability": mutability,
    }


def _event(name, inputs):
    return {
        "type": "event",
        "name": name,
        "anonymous": False,
        "inputs": [
            {"name": n, "type": t, "indexed": indexed, "internalType": t}
            for n, t, indexed in inputs
        ],
    }


def _error(name):
    return {"type": "error", "name": name, "inputs": []}


LOBBY_FIELDS = (
    ("host", "address"),
    ("betAmount", "uint256"),
    ("participants", "address[]"),
    ("status", "uint8"),
    ("winner", "address"),
    ("totalPrize", "uint256"),
    ("stakeToken", "address"),
)
LOBBY_OUTPUT_TYPES = [t for _, t in LOBBY_FIELDS]

# Named reverts the tournament contract can raise
TOURNAMENT_ERRORS = (
    "AlreadyParticipant",
    "GameAlreadyStarted",
    "GameNotFinished",
    "GameNotInProgress",
    "InsufficientFunds",
    "InvalidAmount",
    "InvalidBetAmount",
    "InvalidPaymentAsset",
    "InvalidStatus",
    "InvalidWinner",
    "LobbyAlreadyExists",
    "LobbyFull",
    "LobbyNotFound",
    "NotAllowlisted",
    "NotGameServer",
    "NotHost",
    "NotParticipant",
    "NotWinner",
    "NothingToClaim",
    "PrizeAlreadyClaimed",
    "TokenTransferFailed",
    "TooFewPlayers",
    "TransferFailed",
    "ZeroAddress",
)

TOURNAMENT_ABI = [
    _fn("createLobby", [("lobbyId", "bytes32"), ("betAmount", "uint256"), ("isPublic", "bool"),
                        ("stakeToken", "address")], mutability="payable"),
    _fn("joinLobby", [("lobbyId", "bytes32")], mutability="payable"),
    _fn("cancelLobby", [("lobbyId", "bytes32")]),
    _fn("startGame", [("lobbyId", "bytes32")]),
    _fn("declareWinner", [("lobbyId", "bytes32"), ("winner", "address")]),
    _fn("claimPrize", [("lobbyId", "bytes32")]),
    _fn("addToPrizePool", [("lobbyId", "bytes32"), ("amount", "uint256")], mutability="payable"),
    _fn("addToAllowlist", [("lobbyId", "bytes32"), ("accounts", "address[]")]),
    _fn("removeFromAllowlist", [("lobbyId", "bytes32"), ("accounts", "address[]")]),
    _fn("setAllowlistEnabled", [("lobbyId", "bytes32"), ("enabled", "bool")]),
    _fn("getLobby", [("lobbyId", "bytes32")], LOBBY_FIELDS, mutability="view"),
    _fn("isAllowlistEnabled", [("lobbyId", "bytes32")], [("enabled", "bool")], mutability="view"),
    _fn("isAllowlisted", [("lobbyId", "bytes32"), ("account", "address")], [("allowed", "bool")],
        mutability="view"),
    _fn("getAllPublicLobbies", [], [("", "bytes32[]")], mutability="view"),
    _fn("getPublicLobbyCount", [], [("", "uint256")], mutability="view"),
    _fn("gameServer", [], [("", "address")], mutability="view"),
    _fn("getClaimableBalance", [("account", "address"), ("token", "address")], [("", "uint256")],
        mutability="view"),
    _event("LobbyCreated", [("lobbyId", "bytes32", True), ("host", "address", True),
                            ("betAmount", "uint256", False)]),
    _event("ParticipantJoined", [("lobbyId", "bytes32", True), ("participant", "address", True)]),
    _event("GameStarted", [("lobbyId", "bytes32", True)]),
    _event("WinnerDeclared", [("lobbyId", "bytes32", True), ("winner", "address", True)]),
    _event("GameFinished", [("lobbyId", "bytes32", True), ("winner", "address", True)]),
    _event("PrizeClaimed", [("lobbyId", "bytes32", True), ("winner", "address", True),
                            ("amount", "uint256", False)]),
    _event("LobbyCanceled", [("lobbyId", "bytes32", True)]),
] + [_error(name) for name in TOURNAMENT_ERRORS]

ERC20_ABI = [
    _fn("symbol", [], [("", "string")], mutability="view"),
    _fn("decimals", [], [("", "uint8")], mutability="view"),
    _fn("balanceOf", [("account", "address")], [("", "uint256")], mutability="view"),
    _fn("allowance", [("owner", "address"), ("spender", "address")], [("", "uint256")], mutability="view"),
    _fn("approve", [("spender", "address"), ("amount", "uint256")], [("", "bool")]),
]

MULTICALL3_ABI = [
    {
        "type": "function",
        "name": "aggregate3",
        "stateMutability": "payable",
        "inputs": [
            {
                "name": "calls",
                "type": "tuple[]",
                "internalType": "struct Multicall3.Call3[]",
                "components": [
                    {"name": "target", "type": "address", "internalType": "address"},
                    {"name": "allowFailure", "type": "bool", "internalType": "bool"},
                    {"name": "callData", "type": "bytes", "internalType": "bytes"},
                ],
            }
        ],
        "outputs": [
            {
                "name": "returnData",
                "type": "tuple[]",
                "internalType": "struct Multicall3.Result[]",
                "components": [
                    {"name": "success", "type": "bool", "internalType": "bool"},
                    {"name": "returnData", "type": "bytes", "internalType": "bytes"},
                ],
            }
        ],
    }
]
