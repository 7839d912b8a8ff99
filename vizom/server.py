"""FastAPI proxy between the browser and the DeepSeek API."""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from loguru import logger
from pydantic import BaseModel, Field

from vizom.exceptions import ProxyError, error_from_api_error, proxy_error_handler
from vizom.services.client import DeepSeekClient, GenerationResponse


class GenerateRequest(BaseModel):
    prompt: str = ""
    chart_type: str | None = Field(default=None, alias="chartType")
    template_id: str | None = Field(default=None, alias="templateId")


class AnalyzeRequest(BaseModel):
    prompt: str = ""


class VizomServer:
    """HTTP server exposing chart generation and data analysis."""

    def __init__(self, client: DeepSeekClient, allow_origins: list[str] | None = None):
        self.client = client
        self.app = FastAPI(title="Vizom API", lifespan=self.lifespan)

        self.app.add_middleware(
            CORSMiddleware,
            allow_origins=allow_origins or ["*"],
            allow_methods=["GET", "POST", "OPTIONS"],
            allow_headers=["Content-Type"],
        )
        self.app.add_exception_handler(ProxyError, proxy_error_handler)

        # Register routes
        self.app.post("/api/generate")(self.generate)
        self.app.post("/api/analyze")(self.analyze)
        self.app.get("/health")(self.health_check)
        self.app.get("/metrics")(self.metrics)

    @asynccontextmanager
    async def lifespan(self, app: FastAPI):
        """Start the cache sweep on startup, close the client on shutdown."""
        logger.info("Starting Vizom API...")
        self.client.caching.start()
        yield
        logger.info("Shutting down Vizom API...")
        await self.client.close()
        logger.info("Vizom API stopped")

    async def generate(self, body: GenerateRequest):
        """Generate a chart configuration.

        Returns:
            {success, chartConfig, metadata}
        """
        response = await self.client.generate_chart(
            body.prompt, chart_type=body.chart_type, template_id=body.template_id
        )
        self._raise_for_error(response)
        return {
            "success": True,
            "chartConfig": response.data,
            "metadata": response.metadata.to_dict(),
        }

    async def analyze(self, body: AnalyzeRequest):
        """Analyze data described in the prompt."""
        response = await self.client.analyze_data(body.prompt)
        self._raise_for_error(response)
        return {
            "success": True,
            "analysis": response.data,
            "metadata": response.metadata.to_dict(),
        }

    async def health_check(self):
        """Health check endpoint."""
        return {"status": "ok", "service": "vizom"}

    async def metrics(self):
        """Metrics of the client and its resilience layer."""
        return self.client.get_metrics()

    @staticmethod
    def _raise_for_error(response: GenerationResponse) -> None:
        if response.success:
            return
        raise error_from_api_error(response.error)


def create_app(client: DeepSeekClient, allow_origins: list[str] | None = None) -> FastAPI:
    """Create FastAPI app for the Vizom API.

    Args:
        client: DeepSeekClient instance
        allow_origins: CORS origins (all when omitted)

    Returns:
        FastAPI app
    """
    server = VizomServer(client, allow_origins)
    return server.app
