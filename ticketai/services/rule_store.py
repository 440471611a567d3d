"""Routing rules per tenant, stored in a Redis hash (tenant:{t}:rules, rule_id -> JSON)."""

import logging
import uuid

from ticketai.broker import get_redis, redis_errors
from ticketai.errors import RuleConditionError
from ticketai.models import RoutingRule
from ticketai.services.routing_engine import sort_rules

logger = logging.getLogger(__name__)


def _rules_key(tenant_id: str) -> str:
    return f"tenant:{tenant_id}:rules"


class RuleStore:
    def __init__(self, client=None):
        self._client = client

    @property
    def r(self):
        return self._client if self._client is not None else get_redis()

    def save_rule(self, rule: RoutingRule) -> RoutingRule:
        """
        Validate and upsert a rule. Conditions are re-parsed here so an
        unsupported operator is rejected at creation time (RuleConditionError).
        """
        rule = RoutingRule.model_validate(rule.model_dump())
        if not rule.rule_id:
            rule = rule.model_copy(update={"rule_id": uuid.uuid4().hex})
        with redis_errors("save rule"):
            self.r.hset(_rules_key(rule.tenant_id), rule.rule_id, rule.model_dump_json())
        logger.info("Routing rule %r saved for tenant %s (priority=%d).", rule.name, rule.tenant_id, rule.priority)
        return rule

    def delete_rule(self, tenant_id: str, rule_id: str) -> bool:
        with redis_errors("delete rule"):
            return bool(self.r.hdel(_rules_key(tenant_id), rule_id))

    def list_active_rules(self, tenant_id: str) -> list[RoutingRule]:
        """Active rules, highest priority first (ties ordered by rule id)."""
        with redis_errors("list rules"):
            raw = self.r.hgetall(_rules_key(tenant_id))
        rules = []
        for rule_id in sorted(raw):
            try:
                rule = RoutingRule.model_validate_json(raw[rule_id])
            except (ValueError, RuleConditionError) as e:
                logger.error("Skipping invalid routing rule %s for tenant %s: %s", rule_id, tenant_id, e)
                continue
            if rule.active:
                rules.append(rule)
        return sort_rules(rules)
