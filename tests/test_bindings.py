import pytest

from otpus.services.auth0.actions import reconcile_bindings
from otpus.services.auth0.models import Binding, BindingRef
from otpus.services.errors import InvariantViolation


def _names(bindings):
    return [b.display_name for b in bindings]


def test_appends_action_last_and_keeps_others_by_binding_id():
    existing = [
        Binding(id="bnd_a", display_name="Rate limiter"),
        Binding(id="bnd_b", display_name="Audit"),
    ]

    result = reconcile_bindings(existing, "Custom Phone Provider", "act_new")

    assert _names(result) == ["Rate limiter", "Audit", "Custom Phone Provider"]
    assert result[0].ref == BindingRef(type="binding_id", value="bnd_a")
    assert result[1].ref == BindingRef(type="binding_id", value="bnd_b")
    assert result[-1].ref == BindingRef(type="action_id", value="act_new")


def test_replaces_existing_binding_with_same_name():
    """Тест: старый биндинг того же action выкидывается, новый встаёт в конец."""
    existing = [
        Binding(id="bnd_old", display_name="Custom Phone Provider"),
        Binding(id="bnd_b", display_name="Audit"),
    ]

    result = reconcile_bindings(existing, "Custom Phone Provider", "act_new")

    assert _names(result) == ["Audit", "Custom Phone Provider"]
    assert [b for b in result if b.display_name == "Custom Phone Provider"][0].ref.value == "act_new"


def test_empty_trigger_gets_single_binding():
    result = reconcile_bindings([], "Custom Phone Provider - MFA", "act_1")

    assert len(result) == 1
    assert result[0].ref == BindingRef(type="action_id", value="act_1")


def test_binding_with_ref_but_no_id_is_kept_as_is():
    ref = BindingRef(type="action_name", value="Audit")
    result = reconcile_bindings([Binding(display_name="Audit", ref=ref)], "X", "act_1")

    assert result[0].ref == ref


def test_binding_without_id_or_ref_is_an_invariant_violation():
    with pytest.raises(InvariantViolation):
        reconcile_bindings([Binding(display_name="Broken")], "X", "act_1")


def test_serialized_bindings_carry_only_name_and_ref():
    result = reconcile_bindings([Binding(id="bnd_a", display_name="Audit")], "X", "act_1")

    assert [b.model_dump(exclude_none=True) for b in result] == [
        {"display_name": "Audit", "ref": {"type": "binding_id", "value": "bnd_a"}},
        {"display_name": "X", "ref": {"type": "action_id", "value": "act_1"}},
    ]
