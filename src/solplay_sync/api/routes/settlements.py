"""Settlement history endpoints (``/settlements``).

Read-only views over the mirror. Pages are newest first and capped by the
repository.
"""

from fastapi import APIRouter, HTTPException, Query

from solplay_sync.api.models import SettlementListResponse, SettlementResponse
from solplay_sync.db import sessions_repo, settlements_repo, videos_repo
from solplay_sync.db.settlements_repo import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE


def _page(records) -> list[dict]:
    return [record.to_dict() for record in records]


def router() -> APIRouter:
    api = APIRouter(prefix="/settlements")

    @api.get("/viewer/{viewer}", response_model=SettlementListResponse)
    def viewer_settlements(
        viewer: str,
        limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
        offset: int = Query(0, ge=0),
    ):
        return SettlementListResponse(
            settlements=_page(
                settlements_repo.list_settlements_for_viewer(viewer, limit=limit, offset=offset)
            ),
            totals=settlements_repo.get_viewer_totals(viewer),
        )

    @api.get("/creator/{creator}", response_model=SettlementListResponse)
    def creator_settlements(
        creator: str,
        limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
        offset: int = Query(0, ge=0),
    ):
        """Settlements paying ``creator``, with lifetime ``total_earnings``."""
        return SettlementListResponse(
            settlements=_page(
                settlements_repo.list_settlements_for_creator(creator, limit=limit, offset=offset)
            ),
            totals=settlements_repo.get_creator_totals(creator),
        )

    @api.get("/content/{content_id}", response_model=SettlementListResponse)
    def content_settlements(
        content_id: str,
        limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
        offset: int = Query(0, ge=0),
    ):
        content = videos_repo.resolve_content(content_id)
        if content is None:
            raise HTTPException(status_code=404, detail=f"Content '{content_id}' not found")
        return SettlementListResponse(
            settlements=_page(
                settlements_repo.list_settlements_for_video(content.id, limit=limit, offset=offset)
            ),
            totals=settlements_repo.get_video_totals(content.id),
        )

    @api.get("/session/{session_address}", response_model=SettlementListResponse)
    def session_settlements(
        session_address: str,
        limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
        offset: int = Query(0, ge=0),
    ):
        session = sessions_repo.get_session_by_pda(session_address)
        if session is None:
            raise HTTPException(status_code=404, detail="Session not found")
        return SettlementListResponse(
            settlements=_page(
                settlements_repo.list_settlements_for_session(
                    session.id, limit=limit, offset=offset
                )
            ),
        )

    @api.get("/signature/{signature}", response_model=SettlementResponse)
    def settlement_by_signature(signature: str):
        record = settlements_repo.get_settlement_by_signature(signature)
        if record is None:
            raise HTTPException(status_code=404, detail="Settlement not found")
        return SettlementResponse(settlement=record.to_dict())

    return api
