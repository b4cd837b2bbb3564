from app.llm.base import VisionProvider
from app.llm.types import StyleSignal, VisionRequest, VisionResponse


class LocalProvider(VisionProvider):
    """Offline provider; every image reads as an all-unknown signal."""

    model = "local"

    async def analyze(self, req: VisionRequest) -> VisionResponse:
        return VisionResponse(content=StyleSignal.unknown().model_dump_json(), model=self.model)
