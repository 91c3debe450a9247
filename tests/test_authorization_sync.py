import threading

import pytest

from errors import ElectionNotFound, LedgerRejected, LedgerUnavailable, NoEligibleVoters


def test_record_eligibility_is_a_set_union(store, sync, election, voters):
    lando, oscar, charles = voters

    sync.record_eligibility(election.id, [lando.identity, oscar.identity])
    sync.record_eligibility(election.id, [oscar.identity, charles.identity])
    twice = set(store.links)

    store.links.clear()
    sync.record_eligibility(election.id, [lando.identity, oscar.identity, charles.identity])

    assert twice == set(store.links)


def test_record_eligibility_reports_unresolved_identities(sync, election, voters):
    result = sync.record_eligibility(
        election.id, ["  LANDO@pitwall.test ", "ghost@pitwall.test", voters[1].identity]
    )

    assert result.resolved_count == 2
    assert result.added_count == 2
    assert result.unresolved_identities == ("ghost@pitwall.test",)


def test_record_eligibility_counts_only_new_links(sync, election, voters):
    sync.record_eligibility(election.id, [voters[0].identity])
    result = sync.record_eligibility(election.id, [voters[0].identity, voters[1].identity])

    assert result.resolved_count == 2
    assert result.added_count == 1


def test_record_eligibility_unknown_election(sync, voters):
    with pytest.raises(ElectionNotFound):
        sync.record_eligibility(404, [voters[0].identity])


def test_sync_without_eligible_voters(sync, ledger, election):
    with pytest.raises(NoEligibleVoters):
        sync.sync_to_ledger(election.id)
    assert ledger.authorize_calls == []


def test_sync_unknown_election(sync):
    with pytest.raises(ElectionNotFound):
        sync.sync_to_ledger(404)
    assert sync._locks == {}


def test_sync_pushes_full_eligible_set(sync, ledger, election, voters):
    sync.record_eligibility(election.id, [v.identity for v in voters])

    result = sync.sync_to_ledger(election.id)

    wallets = sorted(v.wallet_address for v in voters)
    assert result.authorized_count == 3
    assert result.contract_address == election.contract_address
    assert ledger.authorize_calls == [(election.contract_address, wallets)]
    assert ledger.contracts[election.contract_address]["authorized"] == set(wallets)


def test_sync_twice_converges_to_same_authorized_set(sync, ledger, election, voters):
    sync.record_eligibility(election.id, [v.identity for v in voters])

    sync.sync_to_ledger(election.id)
    first = set(ledger.contracts[election.contract_address]["authorized"])
    sync.sync_to_ledger(election.id)

    assert ledger.contracts[election.contract_address]["authorized"] == first
    assert ledger.authorize_calls[0] == ledger.authorize_calls[1]


def test_sync_resubmits_whole_set_after_incremental_recording(sync, ledger, election, voters):
    sync.record_eligibility(election.id, [voters[0].identity])
    sync.sync_to_ledger(election.id)
    sync.record_eligibility(election.id, [voters[1].identity])
    sync.sync_to_ledger(election.id)

    assert ledger.authorize_calls[-1][1] == sorted([voters[0].wallet_address, voters[1].wallet_address])


@pytest.mark.parametrize("error", [LedgerUnavailable("node down"), LedgerRejected("not admin")])
def test_sync_failure_keeps_links_and_carries_context(store, sync, ledger, election, voters, error):
    sync.record_eligibility(election.id, [v.identity for v in voters])
    ledger.authorize_error = error

    with pytest.raises(type(error)) as excinfo:
        sync.sync_to_ledger(election.id)

    assert excinfo.value.context["election_id"] == election.id
    assert excinfo.value.context["contract_address"] == election.contract_address
    assert len(store.eligible_wallets(election.id)) == 3

    ledger.authorize_error = None
    assert sync.sync_to_ledger(election.id).authorized_count == 3


def test_concurrent_syncs_for_one_election_are_serialized(store, ledger, election, voters):
    from authorization_sync import AuthorizationSyncService

    in_flight = []
    overlaps = []
    gate = threading.Lock()
    original = ledger.authorize_addresses

    def slow_authorize(contract_address, addresses):
        with gate:
            in_flight.append(contract_address)
            if len(in_flight) > 1:
                overlaps.append(list(in_flight))
        try:
            threading.Event().wait(0.05)
            return original(contract_address, addresses)
        finally:
            with gate:
                in_flight.remove(contract_address)

    ledger.authorize_addresses = slow_authorize
    service = AuthorizationSyncService(store, ledger)
    service.record_eligibility(election.id, [v.identity for v in voters])

    threads = [threading.Thread(target=service.sync_to_ledger, args=(election.id,)) for _ in range(3)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert overlaps == []
    assert len(ledger.authorize_calls) == 3
