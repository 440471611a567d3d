"""
Rule/heuristic routing: (ticket, agents, teams, rules) -> RoutingDecision.

Pure and deterministic. Stages run in order and only fill fields a previous
stage left empty, except escalation, which may replace the chosen agent:
  1. first matching rule (priority desc, list order on ties)
  2. category -> team via team skill tags
  3. best agent in team: skill match + availability + lead bonus
  4. escalation: urgent priority, 'escalated' tag, senior agent
  5. least-busy agent if nothing is assigned
  6. confidence
Agent scores are computed as numpy arrays; argmax/argmin return the first
occurrence, which gives the list-order tie-break.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional, Sequence

import numpy as np

from ticketai.models import Agent, Priority, RoutingDecision, RoutingRule, SentimentLabel, Team, Ticket

logger = logging.getLogger(__name__)

# Team skill tags per category (team selection).
CATEGORY_TEAM_SKILLS: dict[str, list[str]] = {
    "billing": ["billing", "payments", "finance"],
    "technical": ["technical", "engineering", "support"],
    "feature_request": ["product", "feedback"],
    "bug": ["technical", "engineering", "qa"],
    "account": ["account", "customer_success"],
    "general": ["support", "general"],
}
DEFAULT_TEAM_SKILLS = ["support"]

# Narrower agent skill tags per category (agent scoring).
CATEGORY_AGENT_SKILLS: dict[str, list[str]] = {
    "billing": ["billing", "finance"],
    "technical": ["technical", "engineering"],
    "feature_request": ["product"],
    "bug": ["technical", "qa"],
    "account": ["account", "customer_success"],
}

ESCALATION_KEYWORDS = (
    "cancel",
    "refund",
    "lawsuit",
    "lawyer",
    "legal",
    "manager",
    "supervisor",
    "escalate",
    "complaint",
    "terrible",
    "awful",
    "unacceptable",
    "fraud",
)
ESCALATION_SENTIMENT_THRESHOLD = -0.5
ESCALATED_TAG = "escalated"

SKILL_MATCH_POINTS = 10.0
AVAILABILITY_POINTS = 20.0
TEAM_LEAD_BONUS = 5.0

RULE_CONFIDENCE = 0.9
BASE_CONFIDENCE = 0.5
FULL_ASSIGNMENT_BONUS = 0.3
AI_PROCESSED_BONUS = 0.1
HIGH_AI_CONFIDENCE_BONUS = 0.1
HIGH_AI_CONFIDENCE = 0.8

NO_ASSIGNMENT_REASON = "No assignment: no active agents or teams available"


@dataclass
class _Draft:
    """Mutable working state for one routing call; frozen into a RoutingDecision at the end."""

    assign_to_user: Optional[str] = None
    assign_to_team: Optional[str] = None
    set_priority: Optional[str] = None
    add_tags: list[str] = field(default_factory=list)
    reason: str = ""
    confidence: float = 0.0
    rule_matched: bool = False


def _active(agents: Sequence[Agent]) -> list[Agent]:
    return [a for a in agents if a.active]


def _agent_label(agent: Agent) -> str:
    return agent.display_name or agent.agent_id


def sort_rules(rules: Sequence[RoutingRule]) -> list[RoutingRule]:
    """Descending priority; Python's sort is stable, so equal priorities keep list order."""
    return sorted(rules, key=lambda r: -(r.priority or 0))


def match_rule(ticket: Ticket, rules: Sequence[RoutingRule]) -> Optional[RoutingRule]:
    """First active rule (in priority order) whose conditions all hold."""
    for rule in sort_rules(rules):
        if rule.active and rule.matches(ticket):
            return rule
    return None


def find_team_by_category(category: Optional[str], teams: Sequence[Team]) -> Optional[Team]:
    """First team whose skills intersect the category's tags; else the first team."""
    if not teams:
        return None
    wanted = CATEGORY_TEAM_SKILLS.get(category or "", DEFAULT_TEAM_SKILLS)
    for team in teams:
        if any(skill in team.skills for skill in wanted):
            return team
    return teams[0]


def score_agents(team_id: str, agents: Sequence[Agent], ticket: Ticket) -> np.ndarray:
    """Score per agent: +10 per relevant skill, +20 x availability, +5 if lead of `team_id`."""
    relevant = CATEGORY_AGENT_SKILLS.get(ticket.category or "", []) if ticket.category else []
    scores = np.zeros(len(agents), dtype=np.float64)
    for i, agent in enumerate(agents):
        matches = sum(1 for skill in relevant if skill in agent.skills)
        availability = 1.0 - agent.load_ratio
        scores[i] = (
            SKILL_MATCH_POINTS * matches
            + AVAILABILITY_POINTS * availability
            + (TEAM_LEAD_BONUS if agent.leads(team_id) else 0.0)
        )
    return scores


def find_best_agent_in_team(team_id: str, agents: Sequence[Agent], ticket: Ticket) -> Optional[Agent]:
    members = [a for a in _active(agents) if a.in_team(team_id)]
    if not members:
        return None
    scores = score_agents(team_id, members, ticket)
    return members[int(np.argmax(scores))]


def find_least_busy_agent(agents: Sequence[Agent]) -> Optional[Agent]:
    """Lowest current_load / capacity among active agents; list order on ties."""
    pool = _active(agents)
    if not pool:
        return None
    ratios = np.array([a.load_ratio for a in pool], dtype=np.float64)
    return pool[int(np.argmin(ratios))]


def find_senior_agent(agents: Sequence[Agent], team_id: Optional[str]) -> Optional[Agent]:
    """
    Team lead of `team_id` (any team lead when no team is chosen), else any
    manager; least busy among the candidates.
    """
    pool = _active(agents)
    leads = [a for a in pool if a.leads(team_id)]
    if leads:
        return find_least_busy_agent(leads)
    managers = [a for a in pool if a.role == "manager"]
    if managers:
        return find_least_busy_agent(managers)
    return None


def should_escalate(ticket: Ticket) -> bool:
    if ticket.priority == Priority.URGENT.value:
        return True
    if ticket.sentiment == SentimentLabel.VERY_NEGATIVE.value:
        return True
    if ticket.sentiment_score is not None and ticket.sentiment_score < ESCALATION_SENTIMENT_THRESHOLD:
        return True
    text = ticket.text.lower()
    return any(keyword in text for keyword in ESCALATION_KEYWORDS)


def routing_confidence(
    assigned_team: Optional[str],
    assigned_user: Optional[str],
    ticket: Ticket,
) -> float:
    confidence = BASE_CONFIDENCE
    if assigned_team and assigned_user:
        confidence += FULL_ASSIGNMENT_BONUS
    if ticket.ai_processed:
        confidence += AI_PROCESSED_BONUS
    if ticket.ai_confidence is not None and ticket.ai_confidence > HIGH_AI_CONFIDENCE:
        confidence += HIGH_AI_CONFIDENCE_BONUS
    return min(1.0, confidence)


def route(
    ticket: Ticket,
    agents: Sequence[Agent],
    teams: Sequence[Team],
    rules: Sequence[RoutingRule],
    rule_confidence_floor: bool = False,
) -> RoutingDecision:
    """
    Decide team/agent/priority/tags for `ticket`.

    With rule_confidence_floor=False (default) the final confidence is the
    heuristic value even when a rule matched, discarding the rule's 0.9.
    With True, a matched rule keeps at least 0.9.
    """
    draft = _Draft()

    # 1. Rules
    rule = match_rule(ticket, rules)
    if rule is not None:
        draft.assign_to_team = rule.actions.assign_team
        draft.assign_to_user = rule.actions.assign_user
        draft.set_priority = rule.actions.set_priority.value if rule.actions.set_priority else None
        draft.add_tags = list(rule.actions.add_tags)
        draft.reason = f"Matched routing rule: {rule.name}"
        draft.confidence = RULE_CONFIDENCE
        draft.rule_matched = True

    # 2. Category -> team
    if not draft.assign_to_team and ticket.category:
        team = find_team_by_category(ticket.category, teams)
        if team is not None:
            draft.assign_to_team = team.team_id
            if not draft.reason:
                draft.reason = f"Routed to {team.name or team.team_id} team based on category"

    # 3. Best agent in team
    if draft.assign_to_team and not draft.assign_to_user:
        best = find_best_agent_in_team(draft.assign_to_team, agents, ticket)
        if best is not None:
            draft.assign_to_user = best.agent_id
            draft.reason += f" -> Assigned to {_agent_label(best)}"

    # 4. Escalation
    if should_escalate(ticket):
        draft.set_priority = Priority.URGENT.value
        if ESCALATED_TAG not in draft.add_tags:
            draft.add_tags.append(ESCALATED_TAG)
        senior = find_senior_agent(agents, draft.assign_to_team)
        if senior is not None:
            draft.assign_to_user = senior.agent_id
            if draft.reason:
                draft.reason += " (Escalated to senior agent)"
            else:
                draft.reason = f"Escalated to senior agent {_agent_label(senior)}"

    # 5. Load balancing
    if not draft.assign_to_user and not draft.assign_to_team:
        agent = find_least_busy_agent(agents)
        if agent is not None:
            draft.assign_to_user = agent.agent_id
            draft.reason = "Assigned via load balancing"
        else:
            draft.reason = NO_ASSIGNMENT_REASON
            logger.warning("Ticket %s could not be routed: %s.", ticket.ticket_id, NO_ASSIGNMENT_REASON)

    # 6. Confidence
    confidence = routing_confidence(draft.assign_to_team, draft.assign_to_user, ticket)
    if rule_confidence_floor and draft.rule_matched:
        confidence = max(confidence, RULE_CONFIDENCE)

    return RoutingDecision(
        assign_to_user=draft.assign_to_user,
        assign_to_team=draft.assign_to_team,
        set_priority=draft.set_priority,
        add_tags=tuple(draft.add_tags),
        reason=draft.reason.strip(),
        confidence=confidence,
    )
