from tripmax.rules.definitions import AchievementDefinition, StatThreshold
from tripmax.rules.registry import RuleRegistry, static_registry


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


def _defn(code):
    return AchievementDefinition(code, code.title(), "distance", StatThreshold("total_distance", 1.0))


def test_snapshot_cached_until_ttl():
    clock = FakeClock()
    defs = [_defn("A")]
    calls = []

    def load():
        calls.append(1)
        return list(defs)

    reg = RuleRegistry(load, lambda: [], ttl_seconds=60, clock=clock)
    assert [a.code for a in reg.achievements()] == ["A"]

    defs.append(_defn("B"))
    clock.now = 59
    assert [a.code for a in reg.achievements()] == ["A"]
    assert len(calls) == 1

    clock.now = 60
    assert [a.code for a in reg.achievements()] == ["A", "B"]
    assert len(calls) == 2


def test_invalidate_forces_reload():
    defs = [_defn("A")]
    reg = RuleRegistry(lambda: list(defs), lambda: [], ttl_seconds=3600, clock=FakeClock())
    reg.achievements()
    defs.append(_defn("B"))
    reg.invalidate()
    assert len(reg.achievements()) == 2


def test_static_registry_lookup():
    reg = static_registry([_defn("A")])
    assert reg.challenge("NOPE") is None
    assert reg.challenges() == ()
    assert reg.achievements()[0].code == "A"
