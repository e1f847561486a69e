# ─────────────────────────────────────────────────────────────────────────────
# Identity Routes: one resolution, many output formats (THIN)
# ─────────────────────────────────────────────────────────────────────────────
#   /         HTML page (curl/HTTPie get plain text)
#   /json     JSON document
#   /yaml     YAML document, same keys and order
#   /xml      XML template
#   /text     address only, no lookups
#   /clean    plain-text summary template
#   /headers  request header echo, minus forwarding/credential headers
# ─────────────────────────────────────────────────────────────────────────────

from pathlib import Path

import yaml
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse, PlainTextResponse, Response
from fastapi.templating import Jinja2Templates

from ipscope.dependencies import get_identity_resolver
from ipscope.lookup.client import client_address
from ipscope.schemas import IdentityDocument
from ipscope.services.identity import IdentityResolver

router = APIRouter()

templates = Jinja2Templates(directory=str(Path(__file__).resolve().parent.parent / "templates"))

_PLAIN_TEXT_AGENTS = ("curl", "HTTPie")

_HTML_SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Content-Security-Policy": "default-src 'self'; style-src 'unsafe-inline'",
}

# Never echoed back by /headers.
_SENSITIVE_HEADERS = frozenset({"x-forwarded-for", "x-real-ip", "cookie", "authorization"})


def canonical_header_name(name: str) -> str:
    """'x-real-ip' -> 'X-Real-Ip'."""
    return "-".join(part.capitalize() for part in name.split("-"))


@router.get("/")
async def index(
    request: Request,
    resolver: IdentityResolver = Depends(get_identity_resolver),
) -> Response:
    """Browser landing page; command-line clients get the bare address."""
    user_agent = request.headers.get("user-agent", "")
    if any(agent in user_agent for agent in _PLAIN_TEXT_AGENTS):
        return await text(request)

    record = await resolver.resolve(request)
    return templates.TemplateResponse(
        request,
        "index.html",
        {"identity": record},
        headers=_HTML_SECURITY_HEADERS,
    )


@router.get("/json")
async def as_json(
    request: Request,
    resolver: IdentityResolver = Depends(get_identity_resolver),
) -> JSONResponse:
    record = await resolver.resolve(request)
    return JSONResponse(IdentityDocument.from_record(record).model_dump())


@router.get("/yaml")
async def as_yaml(
    request: Request,
    resolver: IdentityResolver = Depends(get_identity_resolver),
) -> Response:
    record = await resolver.resolve(request)
    body = yaml.safe_dump(
        IdentityDocument.from_record(record).model_dump(),
        sort_keys=False,
        allow_unicode=True,
    )
    return Response(content=body, media_type="text/yaml")


@router.get("/xml")
async def as_xml(
    request: Request,
    resolver: IdentityResolver = Depends(get_identity_resolver),
) -> Response:
    record = await resolver.resolve(request)
    return templates.TemplateResponse(
        request,
        "identity.xml",
        {"identity": record},
        media_type="application/xml",
    )


@router.get("/text")
async def text(request: Request) -> PlainTextResponse:
    """Just the address. Skips geo and DNS entirely."""
    return PlainTextResponse(f"{client_address(request)}\n")


@router.get("/clean")
async def clean(
    request: Request,
    resolver: IdentityResolver = Depends(get_identity_resolver),
) -> Response:
    record = await resolver.resolve(request)
    return templates.TemplateResponse(
        request,
        "clean.txt",
        {"identity": record},
        media_type="text/plain",
        headers={"X-Content-Type-Options": "nosniff"},
    )


@router.get("/headers")
async def headers(request: Request) -> PlainTextResponse:
    lines = [
        f"{canonical_header_name(name)}: {value}"
        for name, value in request.headers.items()
        if name.lower() not in _SENSITIVE_HEADERS
    ]
    return PlainTextResponse("".join(f"{line}\n" for line in lines))
