from smart_contract import MAX_CANDIDATES, TEAL_VERSION, compile_contract, state_schema


def test_contract_compiles_for_box_capable_version():
    approval, clear = compile_contract()

    assert approval.startswith(f"#pragma version {TEAL_VERSION}")
    assert clear.startswith(f"#pragma version {TEAL_VERSION}")
    for method in ("authorize", "vote", "stop"):
        assert f'"{method}"' in approval
    assert "box_create" in approval
    assert "box_replace" in approval


def test_state_schema_fits_global_state_limit():
    num_uints, num_byte_slices = state_schema(MAX_CANDIDATES)

    assert state_schema(3) == (7, 4)
    assert num_uints + num_byte_slices <= 64
