"""HTTP surface for one-shot analysis: summary, strategy, suggested question, refinement."""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from stratchat.common import get_logger
from stratchat.relay.analysis import AnalysisError, Analyzer
from stratchat.wire import DecodeError

logger = get_logger("relay/api")


class TextRequest(BaseModel):
  text: str = Field(min_length=1)


class RefineRequest(BaseModel):
  audio: str = Field(min_length=1)
  """Base64 WAV clip."""


class SummaryResponse(BaseModel):
  summary: str
  mood: str


class StrategyResponse(BaseModel):
  strategy: str


class QuestionResponse(BaseModel):
  question: str


class RefineResponse(BaseModel):
  text: str


def create_app(analyzer: Analyzer) -> FastAPI:
  app = FastAPI(title="stratchat relay")
  app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
  )

  @app.exception_handler(AnalysisError)
  async def analysis_failed(_request, error: AnalysisError) -> JSONResponse:
    return JSONResponse(status_code=500, content={"error": str(error)})

  @app.exception_handler(DecodeError)
  async def bad_audio(_request, error: DecodeError) -> JSONResponse:
    return JSONResponse(status_code=400, content={"error": str(error)})

  @app.post("/api/summary", response_model=SummaryResponse)
  async def summary(request: TextRequest) -> SummaryResponse:
    result = await analyzer.summarize(request.text)
    return SummaryResponse(summary=result.summary, mood=result.mood)

  @app.post("/api/strategy", response_model=StrategyResponse)
  async def strategy(request: TextRequest) -> StrategyResponse:
    return StrategyResponse(strategy=await analyzer.strategy(request.text))

  @app.post("/api/question", response_model=QuestionResponse)
  async def question(request: TextRequest) -> QuestionResponse:
    return QuestionResponse(question=await analyzer.question(request.text))

  @app.post("/api/refine", response_model=RefineResponse)
  async def refine(request: RefineRequest) -> RefineResponse:
    text = await analyzer.refine(request.audio)
    logger.info("Refinement served", chars=len(text))
    return RefineResponse(text=text)

  return app
