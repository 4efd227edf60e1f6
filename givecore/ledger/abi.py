"""
Contract ABIs

JSON ABI fragments for the two deployed programs, limited to the functions
and events this package uses. Built with small helpers instead of pasted
compiler output so the field names stay readable.
"""

from typing import Any, Optional

from .transport import ContractName


def _param(name: str, type_: str, components: Optional[list] = None, indexed: Optional[bool] = None) -> dict:
    param: dict[str, Any] = {"name": name, "type": type_}
    if components is not None:
        param["components"] = components
    if indexed is not None:
        param["indexed"] = indexed
    return param


def _fn(name: str, inputs=(), outputs=(), mutability: str = "view") -> dict:
    return {
        "type": "function",
        "name": name,
        "stateMutability": mutability,
        "inputs": list(inputs),
        "outputs": list(outputs),
    }


def _event(name: str, *inputs: dict) -> dict:
    return {"type": "event", "name": name, "anonymous": False, "inputs": list(inputs)}


# ============================================================
# CROWDFUNDING
# ============================================================

_CAMPAIGN_FIELDS = [
    _param("owner", "address"),
    _param("title", "string"),
    _param("description", "string"),
    _param("target", "uint256"),
    _param("deadline", "uint256"),
    _param("amountCollected", "uint256"),
    _param("image", "string"),
    _param("category", "string"),
    _param("isVerified", "bool"),
]

_CAMPAIGN_STRUCT = _CAMPAIGN_FIELDS + [
    _param("donators", "address[]"),
    _param("donations", "uint256[]"),
]

CROWDFUNDING_ABI = [
    _fn("numberOfCampaigns", outputs=[_param("", "uint256")]),
    # Public mapping getter: dynamic arrays are not returned
    _fn("campaigns", [_param("", "uint256")], _CAMPAIGN_FIELDS),
    _fn("getCampaigns", outputs=[_param("", "tuple[]", _CAMPAIGN_STRUCT)]),
    _fn(
        "getDonators",
        [_param("_id", "uint256")],
        [_param("", "address[]"), _param("", "uint256[]")],
    ),
    _fn(
        "createCampaign",
        [
            _param("_owner", "address"),
            _param("_title", "string"),
            _param("_description", "string"),
            _param("_target", "uint256"),
            _param("_deadline", "uint256"),
            _param("_image", "string"),
            _param("_category", "string"),
        ],
        [_param("", "uint256")],
        mutability="nonpayable",
    ),
    _fn("donateToCampaign", [_param("_id", "uint256")], mutability="payable"),
    _fn(
        "postCampaignUpdate",
        [_param("_id", "uint256"), _param("_title", "string"), _param("_content", "string")],
        mutability="nonpayable",
    ),
    _fn(
        "getCampaignUpdates",
        [_param("_id", "uint256")],
        [_param("", "tuple[]", [
            _param("title", "string"),
            _param("content", "string"),
            _param("timestamp", "uint256"),
        ])],
    ),
    _fn("isOrganizerVerified", [_param("_organizer", "address")], [_param("", "bool")]),
    _fn("getCampaignsByOwner", [_param("_owner", "address")], [_param("", "uint256[]")]),
    _fn(
        "getUserDonations",
        [_param("_user", "address")],
        [_param("", "uint256[]"), _param("", "uint256[]")],
    ),
    _fn(
        "getPlatformStats",
        outputs=[_param("stats", "tuple", [
            _param("totalCampaigns", "uint256"),
            _param("totalDonationsCount", "uint256"),
            _param("totalAmountRaised", "uint256"),
            _param("activeCampaignsCount", "uint256"),
        ])],
    ),
    _event(
        "CampaignCreated",
        _param("campaignId", "uint256", indexed=True),
        _param("owner", "address", indexed=True),
        _param("title", "string", indexed=False),
        _param("target", "uint256", indexed=False),
        _param("deadline", "uint256", indexed=False),
        _param("category", "string", indexed=False),
    ),
    _event(
        "DonationReceived",
        _param("campaignId", "uint256", indexed=True),
        _param("donor", "address", indexed=True),
        _param("amount", "uint256", indexed=False),
        _param("newTotal", "uint256", indexed=False),
    ),
    _event(
        "CampaignUpdatePosted",
        _param("campaignId", "uint256", indexed=True),
        _param("title", "string", indexed=False),
        _param("timestamp", "uint256", indexed=False),
    ),
]


# ============================================================
# RESOURCE SHARING
# ============================================================

_RESOURCE_FIELDS = [
    _param("owner", "address"),
    _param("title", "string"),
    _param("description", "string"),
    _param("category", "string"),
    _param("quantityAvailable", "uint256"),
    _param("quantityOriginal", "uint256"),
    _param("unit", "string"),
    _param("location", "string"),
    _param("postedTimestamp", "uint256"),
    _param("isActive", "bool"),
    _param("isVerified", "bool"),
    _param("image", "string"),
]

_RESOURCE_STRUCT = _RESOURCE_FIELDS + [
    _param("claimers", "address[]"),
    _param("claimedAmounts", "uint256[]"),
]

_CLAIM_STRUCT = [
    _param("resourceId", "uint256"),
    _param("claimer", "address"),
    _param("amount", "uint256"),
    _param("timestamp", "uint256"),
    _param("isCompleted", "bool"),
    _param("isCancelled", "bool"),
]

_CLAIM_ADDRESS = [_param("_resourceId", "uint256"), _param("_claimIndex", "uint256")]

RESOURCE_SHARING_ABI = [
    _fn("numberOfResources", outputs=[_param("", "uint256")]),
    _fn("resources", [_param("", "uint256")], _RESOURCE_FIELDS),
    _fn("getResources", outputs=[_param("", "tuple[]", _RESOURCE_STRUCT)]),
    _fn("getResourcesByOwner", [_param("_owner", "address")], [_param("", "uint256[]")]),
    _fn(
        "postResource",
        [
            _param("_title", "string"),
            _param("_description", "string"),
            _param("_category", "string"),
            _param("_quantity", "uint256"),
            _param("_unit", "string"),
            _param("_location", "string"),
            _param("_image", "string"),
        ],
        [_param("", "uint256")],
        mutability="nonpayable",
    ),
    _fn(
        "claimResource",
        [_param("_resourceId", "uint256"), _param("_amount", "uint256")],
        mutability="nonpayable",
    ),
    _fn(
        "getResourceClaims",
        [_param("_resourceId", "uint256")],
        [_param("", "tuple[]", _CLAIM_STRUCT)],
    ),
    _fn(
        "getUserClaims",
        [_param("_user", "address")],
        [
            _param("", "uint256[]"),
            _param("", "uint256[]"),
            _param("", "uint256[]"),
            _param("", "bool[]"),
        ],
    ),
    _fn("completeClaim", _CLAIM_ADDRESS, mutability="nonpayable"),
    _fn("cancelClaim", _CLAIM_ADDRESS, mutability="nonpayable"),
    _fn("deactivateResource", [_param("_resourceId", "uint256")], mutability="nonpayable"),
    _fn("reactivateResource", [_param("_resourceId", "uint256")], mutability="nonpayable"),
    _fn(
        "getResourceStats",
        outputs=[_param("stats", "tuple", [
            _param("totalResources", "uint256"),
            _param("activeResources", "uint256"),
            _param("totalClaims", "uint256"),
            _param("completedClaims", "uint256"),
        ])],
    ),
    _fn("isDonorVerified", [_param("_donor", "address")], [_param("", "bool")]),
    _event(
        "ResourcePosted",
        _param("resourceId", "uint256", indexed=True),
        _param("owner", "address", indexed=True),
        _param("title", "string", indexed=False),
        _param("category", "string", indexed=False),
        _param("quantity", "uint256", indexed=False),
    ),
    _event(
        "ResourceClaimed",
        _param("resourceId", "uint256", indexed=True),
        _param("claimer", "address", indexed=True),
        _param("amount", "uint256", indexed=False),
        _param("claimIndex", "uint256", indexed=False),
    ),
    _event(
        "ClaimCompleted",
        _param("resourceId", "uint256", indexed=True),
        _param("claimIndex", "uint256", indexed=False),
    ),
    _event(
        "ClaimCancelled",
        _param("resourceId", "uint256", indexed=True),
        _param("claimIndex", "uint256", indexed=False),
        _param("amountRestored", "uint256", indexed=False),
    ),
    _event("ResourceDeactivated", _param("resourceId", "uint256", indexed=True)),
    _event("ResourceReactivated", _param("resourceId", "uint256", indexed=True)),
]


ABIS = {
    ContractName.CROWDFUNDING: CROWDFUNDING_ABI,
    ContractName.RESOURCE_SHARING: RESOURCE_SHARING_ABI,
}


def function_entry(contract: ContractName, function: str) -> dict:
    for entry in ABIS[contract]:
        if entry["type"] == "function" and entry["name"] == function:
            return entry
    raise KeyError(f"{contract.value} has no function {function}")


def event_names(contract: ContractName) -> list[str]:
    return [entry["name"] for entry in ABIS[contract] if entry["type"] == "event"]
