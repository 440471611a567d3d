"""
Agent/team directory: tenant-scoped store of agents (skills, teams, load, capacity) and teams.
Backed by Redis (tenant:{t}:agent:{id}, tenant:{t}:agents, tenant:{t}:team:{id}, tenant:{t}:teams).

Listings are ordered by id so routing tie-breaks are stable across calls.
"""

import logging
from typing import Callable, Optional

from ticketai.broker import get_redis, redis_errors
from ticketai.models import Agent, Team, TeamMembership

logger = logging.getLogger(__name__)


def _agent_key(tenant_id: str, agent_id: str) -> str:
    return f"tenant:{tenant_id}:agent:{agent_id}"


def _agents_set(tenant_id: str) -> str:
    return f"tenant:{tenant_id}:agents"


def _team_key(tenant_id: str, team_id: str) -> str:
    return f"tenant:{tenant_id}:team:{team_id}"


def _teams_set(tenant_id: str) -> str:
    return f"tenant:{tenant_id}:teams"


def _assignee_key(tenant_id: str, ticket_id: str) -> str:
    return f"tenant:{tenant_id}:ticket_assignee:{ticket_id}"


class AgentDirectory:
    """Read/write access to agents and teams for the routing worker and admin tooling."""

    def __init__(self, client=None):
        self._client = client

    @property
    def r(self):
        return self._client if self._client is not None else get_redis()

    # --- agents ---

    def register_agent(self, agent: Agent) -> None:
        """Upsert an agent."""
        with redis_errors("register agent"):
            self.r.set(_agent_key(agent.tenant_id, agent.agent_id), agent.model_dump_json())
            self.r.sadd(_agents_set(agent.tenant_id), agent.agent_id)
        logger.info("Agent %s registered for tenant %s (skills=%s, capacity=%d).",
                    agent.agent_id, agent.tenant_id, ",".join(agent.skills), agent.capacity)

    def get_agent(self, tenant_id: str, agent_id: str) -> Optional[Agent]:
        with redis_errors("get agent"):
            raw = self.r.get(_agent_key(tenant_id, agent_id))
        if not raw:
            return None
        return Agent.model_validate_json(raw)

    def list_agents(self, tenant_id: str) -> list[Agent]:
        with redis_errors("list agents"):
            ids = sorted(self.r.smembers(_agents_set(tenant_id)))
        agents = []
        for aid in ids:
            agent = self.get_agent(tenant_id, aid)
            if agent is not None:
                agents.append(agent)
        return agents

    def list_active_agents(self, tenant_id: str) -> list[Agent]:
        return [a for a in self.list_agents(tenant_id) if a.active]

    def _update_load(self, tenant_id: str, agent_id: str, new_load: Callable[[int], int]) -> Optional[Agent]:
        """
        Read-modify-write of an agent record under WATCH/MULTI; redis-py retries
        the callable when another worker changed the record in between.
        """
        key = _agent_key(tenant_id, agent_id)

        def apply(pipe) -> Optional[Agent]:
            raw = pipe.get(key)
            if not raw:
                return None
            agent = Agent.model_validate_json(raw)
            agent.current_load = max(0, new_load(agent.current_load))
            pipe.multi()
            pipe.set(key, agent.model_dump_json())
            return agent

        with redis_errors("update agent load"):
            return self.r.transaction(apply, key, value_from_callable=True)

    def set_agent_load(self, tenant_id: str, agent_id: str, load: int) -> None:
        self._update_load(tenant_id, agent_id, lambda _current: load)

    def assign_ticket_to_agent(self, tenant_id: str, ticket_id: str, agent_id: str) -> None:
        """
        Record the assignment and keep loads in sync. Re-assigning to the same
        agent is a no-op (redelivered routing jobs); moving to another agent
        releases the previous one first.
        """
        with redis_errors("read assignee"):
            previous = self.r.get(_assignee_key(tenant_id, ticket_id))
        if previous == agent_id:
            return
        if previous:
            self.release_ticket_from_agent(tenant_id, ticket_id)
        with redis_errors("record assignee"):
            self.r.set(_assignee_key(tenant_id, ticket_id), agent_id)
        self._update_load(tenant_id, agent_id, lambda current: current + 1)
        logger.info("Assigned ticket %s to agent %s.", ticket_id, agent_id)

    def release_ticket_from_agent(self, tenant_id: str, ticket_id: str) -> None:
        """Decrement the assignee's load when a ticket leaves them."""
        key = _assignee_key(tenant_id, ticket_id)
        with redis_errors("release assignee"):
            agent_id = self.r.get(key)
            if not agent_id:
                return
            self.r.delete(key)
        self._update_load(tenant_id, agent_id, lambda current: current - 1)

    def get_assignee(self, tenant_id: str, ticket_id: str) -> Optional[str]:
        with redis_errors("get assignee"):
            return self.r.get(_assignee_key(tenant_id, ticket_id))

    # --- teams ---

    def register_team(self, team: Team) -> None:
        with redis_errors("register team"):
            self.r.set(_team_key(team.tenant_id, team.team_id), team.model_dump_json())
            self.r.sadd(_teams_set(team.tenant_id), team.team_id)
        logger.info("Team %s registered for tenant %s.", team.team_id, team.tenant_id)

    def list_teams(self, tenant_id: str) -> list[Team]:
        with redis_errors("list teams"):
            ids = sorted(self.r.smembers(_teams_set(tenant_id)))
            raws = [self.r.get(_team_key(tenant_id, tid)) for tid in ids]
        return [Team.model_validate_json(raw) for raw in raws if raw]


def mock_directory(tenant_id: str) -> tuple[list[Team], list[Agent]]:
    """Demo teams and agents covering each category, with one lead per team and a manager."""
    teams = [
        Team(team_id="billing", tenant_id=tenant_id, name="Billing", skills=["billing", "payments"],
             member_ids=["billing-1", "billing-lead"]),
        Team(team_id="engineering", tenant_id=tenant_id, name="Engineering",
             skills=["technical", "engineering", "qa"], member_ids=["tech-1", "tech-lead"]),
        Team(team_id="success", tenant_id=tenant_id, name="Customer Success",
             skills=["account", "customer_success", "product", "support"], member_ids=["success-1"]),
    ]
    agents = [
        Agent(agent_id="billing-1", tenant_id=tenant_id, display_name="Billing Support",
              skills=["billing", "finance"], teams=[TeamMembership(team_id="billing")]),
        Agent(agent_id="billing-lead", tenant_id=tenant_id, display_name="Billing Lead",
              skills=["billing"], teams=[TeamMembership(team_id="billing", is_team_lead=True)], capacity=8),
        Agent(agent_id="tech-1", tenant_id=tenant_id, display_name="Tech Support",
              skills=["technical", "qa"], teams=[TeamMembership(team_id="engineering")]),
        Agent(agent_id="tech-lead", tenant_id=tenant_id, display_name="Engineering Lead",
              skills=["technical", "engineering"],
              teams=[TeamMembership(team_id="engineering", is_team_lead=True)], capacity=8),
        Agent(agent_id="success-1", tenant_id=tenant_id, display_name="Customer Success",
              skills=["account", "customer_success", "product"], teams=[TeamMembership(team_id="success")]),
        Agent(agent_id="manager-1", tenant_id=tenant_id, display_name="Support Manager", role="manager",
              skills=["support"], capacity=5),
    ]
    return teams, agents


def seed_mock_directory(directory: AgentDirectory, tenant_id: str) -> int:
    """Register mock teams/agents that don't exist yet. Preserves current_load on restart."""
    teams, agents = mock_directory(tenant_id)
    for team in teams:
        directory.register_team(team)
    seeded = 0
    for agent in agents:
        if directory.get_agent(tenant_id, agent.agent_id) is None:
            directory.register_agent(agent)
            seeded += 1
    if seeded:
        logger.info("Seeded %d mock agents for tenant %s (existing agents left unchanged).", seeded, tenant_id)
    return seeded
