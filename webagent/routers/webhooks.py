from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from webagent.dependencies import get_processor
from webagent.ingestion.webhook import CrawlEventProcessor

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.post("/firecrawl")
async def firecrawl_webhook(
    request: Request,
    processor: CrawlEventProcessor = Depends(get_processor),
):
    """Receive a Firecrawl crawl / batch-scrape lifecycle event."""
    try:
        body = await request.json()
    except ValueError:
        return JSONResponse({"error": "Invalid JSON body"}, status_code=400)

    result = await processor.handle(body, dict(request.query_params))
    return JSONResponse(result.body, status_code=result.status_code)
