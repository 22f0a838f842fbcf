"""
Synchronous grouped translation of a page (one provider call per field type).

Used for previews and one-off translations: fields are filtered with the full
five-level pipeline, grouped by schema type, and each group is sent as a
single ``Field: <name>\\nContent: <text>`` request. Results are returned,
never written to the content store.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional

from ..host import Page
from ..logging_utils import log
from ..models.provider import CompletionOptions, ModelConfig
from ..models.variant import VariantConfig
from ..processing.field_filter import FieldFilterPipeline
from ..processing.field_grouper import (
    demask_field_contents,
    get_field_contents,
    group_fields_by_type,
    mask_field_contents,
)
from ..processing.prompt_builder import build_system_prompt, category_prompt_for
from ..processing.response_parser import (
    MalformedResponseError,
    compact_json,
    normalize_text,
    parse_grouped_response,
)
from ..providers.base import Provider, ProviderError
from .budget_ledger import BudgetExceededError, BudgetLedger, calculate_cost, estimate_tokens
from .stats_ledger import StatsLedger

GROUP_HEADER = "Translate the following fields:\n\n"
COMPLETION_ESTIMATE_FACTOR = 1.2


@dataclass
class PageTranslation:
    fields: Dict[str, str] = field(default_factory=dict)
    prompt_tokens: int = 0
    completion_tokens: int = 0
    cost: float = 0.0
    errors: Dict[str, str] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return not self.errors


def build_group_content(contents: Mapping[str, str]) -> str:
    body = "".join(f"Field: {name}\nContent: {text}\n\n" for name, text in contents.items())
    return GROUP_HEADER + body


class TranslationService:
    def __init__(
        self,
        budget: BudgetLedger,
        provider: Provider,
        model_config: ModelConfig,
        stats: Optional[StatsLedger] = None,
        field_filter: Optional[FieldFilterPipeline] = None,
    ):
        self.budget = budget
        self.provider = provider
        self.model_config = model_config
        self.stats = stats
        self.field_filter = field_filter

    def _options(self, config: VariantConfig) -> CompletionOptions:
        options = CompletionOptions(output_token_limit=self.model_config.output_token_limit)
        if self.model_config.supports_temperature and config.temperature is not None:
            options.temperature = config.temperature
        return options

    def translate_group(
        self, field_type: str, contents: Mapping[str, str], config: VariantConfig
    ) -> PageTranslation:
        """
        Translate one group of same-typed fields in a single call.

        Raises:
            BudgetExceededError: If the estimated cost does not fit the budget
            ProviderError: On provider failures
            MalformedResponseError: If the response is empty
        """
        type_config = config.field_type_instructions.get(field_type)
        instruction = type_config.instruction if type_config else ""
        system_prompt = build_system_prompt(config, instruction, category_prompt_for(config, type_config))

        masked, maps = mask_field_contents(contents, config.masking)
        user_content = build_group_content(masked)

        input_estimate = estimate_tokens(system_prompt + user_content)
        output_estimate = math.ceil(
            sum(estimate_tokens(text) for text in masked.values()) * COMPLETION_ESTIMATE_FACTOR
        )
        estimated_cost = calculate_cost(input_estimate, output_estimate, self.model_config.pricing)
        if estimated_cost is not None:
            self.budget.ensure_within_limit(input_estimate + output_estimate, estimated_cost)

        messages = [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_content},
        ]
        result = self.provider.complete(messages, self.model_config.model, self._options(config))

        parsed = parse_grouped_response(result.text, list(contents.keys()))
        demasked = demask_field_contents(
            {name: parsed.get(name, "") for name in contents}, maps
        )
        translated = {
            name: compact_json(normalize_text(text, field_type), field_type)
            for name, text in demasked.items()
        }

        cost = calculate_cost(result.prompt_tokens, result.completion_tokens, self.model_config.pricing)
        self.budget.record(result.prompt_tokens, result.completion_tokens, cost)
        if self.stats is not None:
            self.stats.log_api_call(
                self.model_config.provider_type.value,
                result.model or self.model_config.model,
                result.prompt_tokens,
                result.completion_tokens,
                cost,
                context=f"grouped:{field_type}",
                language_code=config.language_code,
            )
        return PageTranslation(
            fields=translated,
            prompt_tokens=result.prompt_tokens,
            completion_tokens=result.completion_tokens,
            cost=cost or 0.0,
        )

    def translate_page(
        self,
        page: Page,
        content: Mapping[str, Any],
        config: VariantConfig,
        candidates: Optional[Iterable[str]] = None,
    ) -> PageTranslation:
        if self.field_filter is not None:
            names = self.field_filter.get_translatable_fields(page, content, config, candidates)
        else:
            names = list(candidates) if candidates is not None else list(content.keys())

        outcome = PageTranslation()
        groups = group_fields_by_type(page, names)
        log(f"Translating {len(names)} fields of {page.id} in {len(groups)} groups")

        for field_type, group_names in groups.items():
            contents = get_field_contents(content, group_names)
            try:
                group = self.translate_group(field_type, contents, config)
            except BudgetExceededError as e:
                outcome.errors[field_type] = str(e)
                log(f"Stopping grouped translation of {page.id}: {e}", level="warning")
                break
            except (ProviderError, MalformedResponseError) as e:
                outcome.errors[field_type] = str(e)
                log(f"Group {field_type} of {page.id} failed: {e}", level="warning")
                self._log_failure(config, field_type, e)
                continue
            outcome.fields.update(group.fields)
            outcome.prompt_tokens += group.prompt_tokens
            outcome.completion_tokens += group.completion_tokens
            outcome.cost += group.cost
        return outcome

    def _log_failure(self, config: VariantConfig, field_type: str, error: Exception) -> None:
        if self.stats is None:
            return
        self.stats.log_api_call(
            self.model_config.provider_type.value,
            self.model_config.model,
            0,
            0,
            None,
            success=False,
            error=str(error),
            context=f"grouped:{field_type}",
            language_code=config.language_code,
        )
