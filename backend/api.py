from contextlib import asynccontextmanager
from datetime import datetime
import logging
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
import uvicorn

from claim_system import ClaimDocument, ClaimService
from claim_system import errors
from claim_system.config import configure_logging, settings

logger = logging.getLogger("claim_system.api")

claim_service: Optional[ClaimService] = None

# Error class -> HTTP status
ERROR_STATUS = {
    errors.UnregisteredSubjectError: 409,
    errors.UnknownCredentialTypeError: 404,
    errors.DuplicateCredentialTypeError: 409,
    errors.DuplicateSubdomainError: 409,
    errors.AlreadyRegisteredError: 409,
    errors.UnauthorizedIssuerError: 403,
    errors.ClaimNotFoundError: 404,
    errors.NotFoundError: 404,
    errors.KeyFormatError: 422,
    errors.EncodingError: 422,
    errors.DecryptionError: 422,
    errors.SigningError: 502,
    errors.StorageError: 503,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    global claim_service
    configure_logging()
    claim_service = ClaimService.from_settings(settings)
    claim_service.ensure_initialized()
    logger.info("Claim service started (DID method: %s, store: %s)", settings.DID_METHOD, settings.STORE_URI)
    yield
    claim_service.store.close()
    logger.info("Shutting down...")


app = FastAPI(title="Claim Issuance API", version="1.0.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(errors.ClaimSystemError)
async def claim_error_handler(request: Request, exc: errors.ClaimSystemError):
    status = ERROR_STATUS.get(type(exc), 500)
    return JSONResponse(status_code=status, content={"detail": exc.message, "error": type(exc).__name__})


@app.exception_handler(ValueError)
async def value_error_handler(request: Request, exc: ValueError):
    return JSONResponse(status_code=400, content={"detail": str(exc), "error": "ValueError"})


def get_service() -> ClaimService:
    if claim_service is None:
        raise HTTPException(status_code=503, detail="Claim service not initialized")
    return claim_service


# ============================================================
# REQUEST MODELS
# ============================================================

class ClaimIn(BaseModel):
    data: Dict[str, Any]
    issuerId: str
    subjectId: str
    claimId: Optional[str] = None
    context: Optional[List[str]] = None
    issuedAt: Optional[datetime] = None
    expirationDate: Optional[datetime] = None

    def to_document(self) -> ClaimDocument:
        kwargs = {}
        if self.context is not None:
            kwargs["context"] = self.context
        return ClaimDocument(
            subject_id=self.subjectId,
            issuer_id=self.issuerId,
            data=self.data,
            claim_id=self.claimId or "",
            issued_at=self.issuedAt,
            expiration_date=self.expirationDate,
            **kwargs,
        )


class RegisterRequest(BaseModel):
    address: str


class CredentialTypeRequest(BaseModel):
    name: str
    description: str = ""
    issuerAddress: str
    subdomain: Optional[str] = None


class IssueRequest(BaseModel):
    subjectAddress: str
    credentialType: str
    issuerAddress: str
    claim: ClaimIn


class BulkItem(BaseModel):
    credentialType: str
    claim: ClaimIn


class BulkIssueRequest(BaseModel):
    subjectAddress: str
    issuerAddress: str
    claims: List[BulkItem] = Field(min_length=1)


class KeyPairRequest(BaseModel):
    publicJwk: Dict[str, Any]
    privateJwk: Dict[str, Any]


# ============================================================
# DID ENDPOINTS
# ============================================================

@app.post("/api/did/register")
async def register_did(req: RegisterRequest):
    """Register the DID of an address on every ledger partition (idempotent)"""
    service = get_service()
    did = service.register_did(req.address)
    return {"did": did, "status": service.is_did_registered(req.address).to_dict()}


@app.get("/api/did/{address}/status")
async def did_status(address: str):
    return get_service().is_did_registered(address).to_dict()


@app.get("/api/did/{address}/document")
async def did_document(address: str):
    service = get_service()
    if not service.is_did_registered(address).primary:
        raise HTTPException(status_code=404, detail="DID not registered")
    doc = service.did_document(address)
    return {"did": doc.id, "document": doc.to_dict()}


# ============================================================
# CREDENTIAL TYPE ENDPOINTS
# ============================================================

@app.post("/api/credential-types", status_code=201)
async def create_credential_type(req: CredentialTypeRequest):
    tx = get_service().create_credential_type(
        req.name, req.description, req.issuerAddress, subdomain=req.subdomain
    )
    return {"name": req.name, "subdomain": req.subdomain, "tx": tx}


@app.get("/api/credential-types/{name}")
async def credential_type_exists(name: str):
    return {"name": name, "exists": get_service().credential_type_exists(name)}


@app.get("/api/subdomains/{subdomain}")
async def subdomain_lookup(subdomain: str):
    service = get_service()
    if service.is_subdomain_available(subdomain):
        return {"subdomain": subdomain, "available": True, "credentialType": None}
    return {
        "subdomain": subdomain,
        "available": False,
        "credentialType": service.credential_type_by_subdomain(subdomain),
    }


# ============================================================
# CLAIM ENDPOINTS
# ============================================================

@app.post("/api/claims/issue", status_code=201)
async def issue_claim(req: IssueRequest):
    """Encrypt, store and record a claim; returns its content address"""
    content_address = get_service().issue_claim(
        req.subjectAddress, req.credentialType, req.claim.to_document(), req.issuerAddress
    )
    return {"contentAddress": content_address}


@app.post("/api/claims/bulk")
async def bulk_issue_claims(req: BulkIssueRequest):
    result = get_service().bulk_issue_claims(
        req.subjectAddress,
        req.issuerAddress,
        [(item.credentialType, item.claim.to_document()) for item in req.claims],
    )
    return result.to_dict()


@app.get("/api/claims/{address}/{credential_type}")
async def verify_claim(address: str, credential_type: str):
    document = get_service().verify_claim(address, credential_type)
    return {"claim": document.to_dict(), "expired": document.is_expired()}


# ============================================================
# KEY ENDPOINTS
# ============================================================

@app.get("/api/keys/public")
async def public_key():
    jwk = get_service().export_public_key()
    if jwk is None:
        raise HTTPException(status_code=404, detail="No key pair")
    return {"publicJwk": jwk}


@app.put("/api/keys")
async def set_key_pair(req: KeyPairRequest):
    keypair = get_service().set_key_pair(req.publicJwk, req.privateJwk)
    return {"keyId": keypair.key_id, "publicJwk": keypair.public_jwk}


@app.get("/api/info")
async def info():
    service = get_service()
    return {
        "available": True,
        "signerAddresses": service.signer.addresses if hasattr(service.signer, "addresses") else [],
        "statistics": service.get_statistics(),
    }


if __name__ == "__main__":
    uvicorn.run("api:app", host="0.0.0.0", port=8000)
