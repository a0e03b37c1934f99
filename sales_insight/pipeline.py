"""
Pipeline driver.

Flow:
1. Receive rows (parsed from the uploaded spreadsheet)
2. Build a fresh seed context for this request
3. Run the three LLM stages; in parallel, aggregate the rows into chart data
   (the aggregates do not depend on the stage outcome)
4. Assemble {prompts, intermediateResults, reportData, chartData}

Any failure in either branch is raised as-is; no partial payload is returned.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, List, Optional

from .aggregator import ColumnMapping, build_chart_data
from .config import Settings
from .errors import InputError
from .llm_client import GeminiClient, GenerationSettings, ModelClient
from .orchestrator import StageOrchestrator
from .prompts import load_templates
from .schemas import AnalysisContext, AnalysisResponse, ContextHeader, SchemaInfo
from .utils import EXCEL_SOURCE, load_rows

logger = logging.getLogger(__name__)

TASK = "sales_analysis"


class AnalysisPipeline:
    def __init__(self, settings: Settings, client: Optional[ModelClient] = None):
        self.settings = settings
        self.templates = load_templates(settings.language)
        self.columns = ColumnMapping.from_vocabulary(self.templates.vocabulary)
        self.client = client or GeminiClient.from_settings(settings)
        self.orchestrator = StageOrchestrator(
            client=self.client,
            generation=GenerationSettings.from_settings(settings),
            templates=self.templates,
        )

    def build_seed_context(self, data_source: str = EXCEL_SOURCE) -> Dict[str, Any]:
        """Fresh context: schema declared, thinking/results empty."""
        seed = AnalysisContext(
            context=ContextHeader(
                task=TASK,
                data_source=data_source,
                schema=SchemaInfo(inferred=True, fields=self.templates.vocabulary.schema_fields),
            ),
            thinking={},
            results={},
        )
        return seed.model_dump(by_alias=True)

    def run(self, rows: List[Dict[str, Any]], data_source: str = EXCEL_SOURCE) -> AnalysisResponse:
        if not rows:
            raise InputError("Spreadsheet contains no data rows")

        seed = self.build_seed_context(data_source)
        logger.info(f"Running analysis over {len(rows)} rows ({data_source}, language={self.templates.language})")

        with ThreadPoolExecutor(max_workers=1) as pool:
            charts = pool.submit(build_chart_data, rows, self.columns)
            stage_run = self.orchestrator.run(rows, seed)
            chart_data = charts.result()

        return AnalysisResponse(
            prompts=stage_run.prompts,
            intermediateResults=stage_run.transcript,
            reportData=stage_run.report,
            chartData=chart_data,
        )

    def analyze_upload(self, filename: Optional[str], content: bytes) -> AnalysisResponse:
        rows, data_source = load_rows(filename, content, row_limit=self.settings.row_limit)
        return self.run(rows, data_source)
