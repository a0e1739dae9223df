"""Threat scenarios against the mirror and the end-to-end simulation."""

import pytest

from credbridge.core.enums import PredicateName
from credbridge.ledgers.mirror import VIOLATION_ERRORS
from credbridge.simulation.runner import run_all_scenarios, run_scenario, run_simulation
from credbridge.simulation.threats import SCENARIOS, Label, ThreatId, get_scenario


class TestThreatScenarios:
    """Every SAFE sample is accepted and every ATTACK sample rejected."""

    @pytest.mark.parametrize("threat_id", list(ThreatId))
    def test_scenario_is_classified_correctly(self, threat_id):
        scenario = SCENARIOS[threat_id]
        outcomes = run_scenario(scenario)

        assert outcomes, "scenario produced no samples"
        assert all(o.correct for o in outcomes), [o.model_dump() for o in outcomes]

    @pytest.mark.parametrize("threat_id", list(ThreatId))
    def test_attack_stopped_by_expected_check(self, threat_id):
        scenario = SCENARIOS[threat_id]
        expected_error = VIOLATION_ERRORS[scenario.expected_violation].__name__

        attacks = [o for o in run_scenario(scenario) if o.label is Label.ATTACK]

        assert attacks
        assert {o.error for o in attacks} == {expected_error}

    def test_every_check_has_a_scenario(self):
        covered = {s.expected_violation for s in SCENARIOS.values()}
        assert covered == set(PredicateName)

    def test_replay_includes_resigned_copy(self):
        outcomes = run_scenario(SCENARIOS[ThreatId.T3_REPLAY])
        assert [o.label for o in outcomes] == [Label.SAFE, Label.ATTACK, Label.ATTACK]
        assert outcomes[2].error == "AlreadyProcessed"

    def test_run_all_covers_every_threat(self):
        report = run_all_scenarios()
        assert set(report) == set(ThreatId)

    def test_get_scenario(self):
        assert get_scenario(ThreatId.T1_TAMPER).expected_violation is PredicateName.AUTHENTIC


class TestRunSimulation:
    @pytest.mark.asyncio
    async def test_every_credential_mirrored_once(self):
        report = await run_simulation(4, relayers=3, pending_polls=1)

        assert report.all_mirrored is True
        assert report.delivered == 4
        assert report.processed_count == 4
        assert set(report.results) == {"relayer-0", "relayer-1", "relayer-2"}

    @pytest.mark.asyncio
    async def test_single_relayer(self):
        report = await run_simulation(2, relayers=1)

        assert report.delivered == 2
        assert all(r.ok for r in report.results["relayer-0"])
