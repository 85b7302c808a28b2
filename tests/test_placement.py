"""
Tests for VM placement strategies.
"""
import pytest

from cloud_broker.core.resources import HostSpecs, Host
from cloud_broker.scheduling.placement import (
    PlacementStrategy,
    VmPlacementEngine,
    create_placement_engine,
)
from test_utils import create_test_hosts, create_test_vms


def free_counts(engine):
    return [engine.ledger.free_pes(host) for host in engine.hosts]


def test_round_robin_visits_each_host_once_per_cycle():
    """N uniform hosts: N consecutive placements land on N different hosts."""
    hosts = create_test_hosts(3, num_pes=4)
    engine = VmPlacementEngine(hosts, PlacementStrategy.ROUND_ROBIN)
    vms = create_test_vms(6)

    placed = [engine.place(vm).host_id for vm in vms]
    assert sorted(placed[:3]) == [0, 1, 2]
    assert sorted(placed[3:]) == [0, 1, 2]
    assert free_counts(engine) == [2, 2, 2]


def test_round_robin_skips_full_host():
    """A host without free PEs is passed over within the same call."""
    hosts = create_test_hosts(2, num_pes=1)
    engine = VmPlacementEngine(hosts, PlacementStrategy.ROUND_ROBIN)
    vms = create_test_vms(3)

    assert engine.place(vms[0]).host_id == 0
    engine.rotation.next()  # rotation now points at host 0 again
    assert engine.place(vms[1]).host_id == 1
    assert engine.place(vms[2]) is None


def test_greedy_first_fit_fills_in_list_order():
    hosts = create_test_hosts(2, num_pes=2)
    engine = VmPlacementEngine(hosts, PlacementStrategy.GREEDY_FIRST_FIT)
    placed = [engine.place(vm).host_id for vm in create_test_vms(3)]
    assert placed == [0, 0, 1]


def test_worst_fit_prefers_fewest_used_pes():
    """Largest free count wins; ties go to the earliest host."""
    hosts = create_test_hosts(3, num_pes=4)
    engine = VmPlacementEngine(hosts, PlacementStrategy.WORST_FIT)
    vms = create_test_vms(4, num_pes=2)

    placed = [engine.place(vm).host_id for vm in vms]
    assert placed == [0, 1, 2, 0]
    assert free_counts(engine) == [0, 2, 2]


def test_rank_based_prefers_most_available_mips():
    """Available MIPS = free PEs x MIPS per PE."""
    hosts = [
        Host(0, HostSpecs(num_pes=4, mips_per_pe=500.0)),
        Host(1, HostSpecs(num_pes=2, mips_per_pe=1500.0)),
        Host(2, HostSpecs(num_pes=3, mips_per_pe=1000.0)),
    ]
    engine = VmPlacementEngine(hosts, PlacementStrategy.RANK_BASED)
    vms = create_test_vms(3, num_pes=1)

    # 2000 / 3000 / 3000 -> host 1 (tie with 2, earlier wins)
    assert engine.place(vms[0]).host_id == 1
    # 2000 / 1500 / 3000 -> host 2
    assert engine.place(vms[1]).host_id == 2
    # 2000 / 1500 / 2000 -> host 0
    assert engine.place(vms[2]).host_id == 0


def test_best_fit_packs_the_tightest_host():
    """Fewest free PEs that still fit wins; the rotation index is left alone."""
    hosts = create_test_hosts(3, num_pes=4)
    engine = VmPlacementEngine(hosts, PlacementStrategy.BEST_FIT)
    first, second, third = create_test_vms(3, num_pes=2)
    engine.place_on(first, hosts[1])

    assert engine.place(second).host_id == 1
    assert engine.place(third).host_id == 0
    assert free_counts(engine) == [2, 0, 4]
    assert engine.rotation.next() is hosts[0]


def test_best_fit_skips_tight_host_that_rejects_vm():
    hosts = create_test_hosts(2, num_pes=4, ram=1024)
    engine = VmPlacementEngine(hosts, PlacementStrategy.BEST_FIT)
    engine.place_on(create_test_vms(1, num_pes=2)[0], hosts[1])
    hosts[1].ram_in_use = 1000
    vm = create_test_vms(2, ram=512)[1]

    assert engine.place(vm).host_id == 0


def test_least_vms_spreads_by_vm_count():
    hosts = create_test_hosts(2, num_pes=8)
    engine = VmPlacementEngine(hosts, PlacementStrategy.LEAST_VMS)
    big, small_a, small_b = create_test_vms(3)
    big.num_pes = 6

    assert engine.place(big).host_id == 0
    assert engine.place(small_a).host_id == 1
    assert engine.place(small_b).host_id == 0


@pytest.mark.parametrize("strategy", list(PlacementStrategy))
def test_failed_placement_leaves_ledger_unchanged(strategy):
    """No host fits: None is returned and no PEs are taken."""
    hosts = create_test_hosts(2, num_pes=2)
    engine = VmPlacementEngine(hosts, strategy)
    vm = create_test_vms(1, num_pes=3)[0]

    assert engine.place(vm) is None
    assert free_counts(engine) == [2, 2]
    assert len(engine.ledger) == 0
    assert all(not host.vms for host in hosts)


@pytest.mark.parametrize("strategy", list(PlacementStrategy))
def test_placing_twice_returns_existing_host(strategy):
    hosts = create_test_hosts(2, num_pes=4)
    engine = VmPlacementEngine(hosts, strategy)
    vm = create_test_vms(1, num_pes=2)[0]

    first = engine.place(vm)
    second = engine.place(vm)
    assert first is second
    assert sum(free_counts(engine)) == 6


def test_host_constraints_checked_before_reserving():
    """A host short on RAM is skipped without touching its PEs."""
    hosts = create_test_hosts(2, num_pes=4, ram=1024)
    hosts[0].ram_in_use = 1000
    engine = VmPlacementEngine(hosts, PlacementStrategy.GREEDY_FIRST_FIT)
    vm = create_test_vms(1, ram=512)[0]

    assert engine.place(vm).host_id == 1
    assert free_counts(engine) == [4, 3]


def test_vm_faster_than_host_pe_is_rejected():
    hosts = create_test_hosts(1, num_pes=4, mips_per_pe=100.0)
    engine = VmPlacementEngine(hosts, PlacementStrategy.WORST_FIT)
    assert engine.place(create_test_vms(1, mips=150.0)[0]) is None


def test_deallocate_restores_capacity(log_messages):
    hosts = create_test_hosts(1, num_pes=4)
    engine = VmPlacementEngine(hosts, PlacementStrategy.WORST_FIT)
    vm, stranger = create_test_vms(2, num_pes=3)

    host = engine.place(vm)
    assert vm.host is host
    assert engine.deallocate(vm) is host
    assert free_counts(engine) == [4]
    assert vm.host is None
    assert not host.vms

    assert engine.deallocate(stranger) is None
    assert any("holds no reservation" in message for message in log_messages)


def test_place_on_explicit_host():
    hosts = create_test_hosts(2, num_pes=2)
    engine = VmPlacementEngine(hosts, PlacementStrategy.WORST_FIT)
    vm, too_big = create_test_vms(2)
    too_big.num_pes = 3

    assert engine.place_on(vm, hosts[1])
    assert engine.host_of(vm) is hosts[1]
    assert engine.place_on(vm, hosts[1])
    assert not engine.place_on(vm, hosts[0])
    assert not engine.place_on(too_big, hosts[0])


def test_shared_ledger_is_used():
    from cloud_broker.core.ledger import CapacityLedger

    ledger = CapacityLedger()
    hosts = create_test_hosts(1)
    engine = VmPlacementEngine(hosts, PlacementStrategy.ROUND_ROBIN, ledger=ledger)
    engine.place(create_test_vms(1)[0])
    assert engine.ledger is ledger
    assert len(ledger) == 1


def test_create_placement_engine_by_name():
    engine = create_placement_engine("rank_based", create_test_hosts(1))
    assert engine.strategy == PlacementStrategy.RANK_BASED

    with pytest.raises(ValueError, match="Unknown placement strategy"):
        create_placement_engine("best_guess", create_test_hosts(1))


def test_failed_host_is_skipped_until_recovered():
    hosts = create_test_hosts(2, num_pes=4)
    engine = VmPlacementEngine(hosts, PlacementStrategy.GREEDY_FIRST_FIT)
    first, second = create_test_vms(2)

    hosts[0].fail()
    assert engine.place(first).host_id == 1
    hosts[0].recover()
    assert engine.place(second).host_id == 0
