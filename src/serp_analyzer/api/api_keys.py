from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
from typing import List

from ..database import get_db
from ..models.api_key import APIKey
from ..models.user import User
from ..providers.errors import RemoteJobError, classify_failure, describe_failure
from ..schemas import APIKeyRequest, APIKeyInfo, APIKeyTestResponse
from ..services.credentials import CredentialPool
from ..services.orchestrator import ClientFactory
from .dependencies import get_client_factory, get_current_user

router = APIRouter(prefix="/v1/api-keys", tags=["API Keys"])


def _to_info(api_key: APIKey) -> APIKeyInfo:
    return APIKeyInfo(
        id=api_key.id,
        key_name=api_key.key_name,
        provider=api_key.provider,
        status=api_key.status,
        key_preview=api_key.preview,
        last_used=api_key.last_used,
        last_failed=api_key.last_failed,
        failure_count=api_key.failure_count,
        created_at=api_key.created_at,
    )


def _get_owned_key(pool: CredentialPool, user: User, key_id: str) -> APIKey:
    api_key = pool.get_for_user(user.id, key_id)
    if not api_key:
        raise HTTPException(status_code=404, detail=f"API key '{key_id}' not found")
    return api_key


@router.post("/", response_model=APIKeyInfo, status_code=201)
async def create_api_key(
    request: APIKeyRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Store a new Apify API key for rotation."""
    api_key = CredentialPool(db).create(current_user.id, request)
    return _to_info(api_key)


@router.get("/", response_model=List[APIKeyInfo])
async def list_api_keys(
    current_user: User = Depends(get_current_user), db: Session = Depends(get_db)
):
    """List the current user's API keys (secrets are masked)."""
    return [_to_info(api_key) for api_key in CredentialPool(db).list_for_user(current_user.id)]


@router.get("/{key_id}", response_model=APIKeyInfo)
async def get_api_key(
    key_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Get one API key."""
    return _to_info(_get_owned_key(CredentialPool(db), current_user, key_id))


@router.post("/{key_id}/reset", response_model=APIKeyInfo)
async def reset_api_key(
    key_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Mark a failed or rate limited key as active again."""
    pool = CredentialPool(db)
    api_key = pool.reset(_get_owned_key(pool, current_user, key_id))
    return _to_info(api_key)


@router.post("/{key_id}/test", response_model=APIKeyTestResponse)
async def test_api_key(
    key_id: str,
    current_user: User = Depends(get_current_user),
    client_factory: ClientFactory = Depends(get_client_factory),
    db: Session = Depends(get_db),
):
    """Check the key against Apify and update its status accordingly."""
    pool = CredentialPool(db)
    api_key = _get_owned_key(pool, current_user, key_id)

    try:
        async with client_factory(api_key.api_key) as client:
            account = await client.verify_credential()
    except RemoteJobError as e:
        kind = classify_failure(e)
        pool.record_failure(api_key, kind)
        return APIKeyTestResponse(
            id=api_key.id,
            ok=False,
            status=api_key.status,
            message=describe_failure(kind, e),
        )

    pool.reset(api_key)
    username = account.get("username") or "unknown account"
    return APIKeyTestResponse(
        id=api_key.id, ok=True, status=api_key.status, message=f"Key works ({username})"
    )


@router.delete("/{key_id}")
async def delete_api_key(
    key_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Delete an API key."""
    pool = CredentialPool(db)
    pool.delete(_get_owned_key(pool, current_user, key_id))
    return {"message": "API key deleted successfully"}
