"""
API Routes for the Link Registry

Command-style endpoints (no PATCH, no PUT, no DELETE):
- POST /links                      - Push a link (verified linking event)
- POST /links/{account}/pull       - Pull an account's link

Query endpoints:
- GET /links                       - List all links
- GET /links/accounts/{account}    - Key linked to an account
- GET /links/pubkeys/{pubkey}      - Account linked to a key
- GET /links/authorization-message - Text the wallet must personal_sign

Errors are raised as LinkrError and rendered by the handler in linkr.main.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, status
from pydantic import BaseModel, Field

from ..core import AuthorizationAction, LinkRegistry, authorization_message
from ..schemas import LinkingEvent, LinkRecord, normalize_account, normalize_pubkey


router = APIRouter(prefix="/links", tags=["Links"])


# ============================================================
# Dependency Injection
# ============================================================

def get_registry(request: Request) -> LinkRegistry:
    return request.app.state.registry


# ============================================================
# Request/Response Models
# ============================================================

class PushLinkRequest(BaseModel):
    """Request to link an account to a Nostr key."""
    account: str = Field(..., description="Account address, optional 0x prefix")
    event: LinkingEvent
    account_signature: Optional[str] = Field(
        default=None,
        description="0x-prefixed 65-byte personal_sign over the link message",
    )


class PullLinkRequest(BaseModel):
    """Request to remove an account's link."""
    account_signature: Optional[str] = Field(
        default=None,
        description="0x-prefixed 65-byte personal_sign over the unlink message",
    )


class AccountLookupResponse(BaseModel):
    account: str
    pubkey: Optional[str] = None


class PubkeyLookupResponse(BaseModel):
    pubkey: str
    account: Optional[str] = None


class LinkListResponse(BaseModel):
    count: int
    links: list[LinkRecord]


class AuthorizationMessageResponse(BaseModel):
    action: AuthorizationAction
    account: str
    pubkey: str
    message: str


# ============================================================
# Command Endpoints
# ============================================================

@router.post(
    "",
    response_model=LinkRecord,
    status_code=status.HTTP_201_CREATED,
    summary="Push a link",
)
def push_link(
    body: PushLinkRequest,
    registry: LinkRegistry = Depends(get_registry),
) -> LinkRecord:
    """
    Link an account to the key that signed the event.

    Any previous link of either party is superseded (or the request is
    refused with 409 under the REJECT policy).
    """
    return registry.push(
        body.account,
        body.event,
        account_signature=body.account_signature,
    )


@router.post(
    "/{account}/pull",
    response_model=LinkRecord,
    summary="Pull a link",
)
def pull_link(
    account: str,
    body: Optional[PullLinkRequest] = None,
    registry: LinkRegistry = Depends(get_registry),
) -> LinkRecord:
    """Remove both directions of the account's link. 404 if none."""
    signature = body.account_signature if body is not None else None
    return registry.pull(account, account_signature=signature)


# ============================================================
# Query Endpoints
# ============================================================

@router.get("", response_model=LinkListResponse, summary="List links")
def list_links(registry: LinkRegistry = Depends(get_registry)) -> LinkListResponse:
    links = registry.list_links()
    return LinkListResponse(count=len(links), links=links)


@router.get(
    "/accounts/{account}",
    response_model=AccountLookupResponse,
    summary="Key for an account",
)
def lookup_by_account(
    account: str,
    registry: LinkRegistry = Depends(get_registry),
) -> AccountLookupResponse:
    return AccountLookupResponse(
        account=normalize_account(account),
        pubkey=registry.lookup_by_account(account),
    )


@router.get(
    "/pubkeys/{pubkey}",
    response_model=PubkeyLookupResponse,
    summary="Account for a key",
)
def lookup_by_key(
    pubkey: str,
    registry: LinkRegistry = Depends(get_registry),
) -> PubkeyLookupResponse:
    return PubkeyLookupResponse(
        pubkey=normalize_pubkey(pubkey),
        account=registry.lookup_by_key(pubkey),
    )


@router.get(
    "/authorization-message",
    response_model=AuthorizationMessageResponse,
    summary="Message to personal_sign",
)
def get_authorization_message(
    action: AuthorizationAction = Query(...),
    account: str = Query(...),
    pubkey: str = Query(...),
) -> AuthorizationMessageResponse:
    """
    The exact text an account must personal_sign to authorize a push
    (action=link) or pull (action=unlink).
    """
    return AuthorizationMessageResponse(
        action=action,
        account=normalize_account(account),
        pubkey=normalize_pubkey(pubkey),
        message=authorization_message(action, account, pubkey),
    )
