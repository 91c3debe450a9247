from pyteal import *

MAX_CANDIDATES = 14
MAX_NAME_BYTES = 64
AUTHORIZE_BATCH_SIZE = 7
TEAL_VERSION = 8

# Box value for an authorized wallet; flipped to VOTED on its single vote.
AUTHORIZED = "00"
VOTED = "01"


def _name_key(index: Expr) -> Expr:
    return Concat(Bytes("name_"), Itob(index))


def _count_key(index: Expr) -> Expr:
    return Concat(Bytes("count_"), Itob(index))


def state_schema(candidate_count: int) -> tuple[int, int]:
    # uints: start, end, active, candidates + one counter each
    # byte slices: admin + one name each
    return 4 + candidate_count, 1 + candidate_count


def build_approval_program() -> Expr:
    admin_key = Bytes("admin")
    start_key = Bytes("start")
    end_key = Bytes("end")
    active_key = Bytes("active")
    candidates_key = Bytes("candidates")

    i = ScratchVar(TealType.uint64)
    candidate_count = Txn.application_args.length() - Int(2)
    name_arg = Txn.application_args[i.load() + Int(2)]

    on_create = Seq(
        Assert(Txn.application_args.length() >= Int(4)),
        Assert(Txn.application_args.length() <= Int(MAX_CANDIDATES + 2)),
        Assert(Btoi(Txn.application_args[0]) < Btoi(Txn.application_args[1])),
        App.globalPut(admin_key, Txn.sender()),
        App.globalPut(start_key, Btoi(Txn.application_args[0])),
        App.globalPut(end_key, Btoi(Txn.application_args[1])),
        App.globalPut(active_key, Int(1)),
        App.globalPut(candidates_key, candidate_count),
        For(i.store(Int(0)), i.load() < candidate_count, i.store(i.load() + Int(1))).Do(
            Seq(
                Assert(Len(name_arg) > Int(0)),
                Assert(Len(name_arg) <= Int(MAX_NAME_BYTES)),
                App.globalPut(_name_key(i.load()), name_arg),
                App.globalPut(_count_key(i.load()), Int(0)),
            )
        ),
        Approve(),
    )

    address = ScratchVar(TealType.bytes)
    authorize = Seq(
        Assert(Txn.sender() == App.globalGet(admin_key)),
        Assert(Txn.application_args.length() >= Int(2)),
        Assert(Txn.application_args.length() <= Int(AUTHORIZE_BATCH_SIZE + 1)),
        For(i.store(Int(1)), i.load() < Txn.application_args.length(), i.store(i.load() + Int(1))).Do(
            Seq(
                address.store(Txn.application_args[i.load()]),
                Assert(Len(address.load()) == Int(32)),
                # box_create leaves an existing box of the same size untouched
                Pop(App.box_create(address.load(), Int(1))),
            )
        ),
        Approve(),
    )

    choice = ScratchVar(TealType.uint64)
    voter_box = App.box_get(Txn.sender())
    vote = Seq(
        Assert(Txn.application_args.length() == Int(2)),
        Assert(App.globalGet(active_key) == Int(1)),
        Assert(Global.latest_timestamp() >= App.globalGet(start_key)),
        Assert(Global.latest_timestamp() < App.globalGet(end_key)),
        choice.store(Btoi(Txn.application_args[1])),
        Assert(choice.load() < App.globalGet(candidates_key)),
        voter_box,
        Assert(voter_box.hasValue()),
        Assert(voter_box.value() == Bytes("base16", AUTHORIZED)),
        App.box_replace(Txn.sender(), Int(0), Bytes("base16", VOTED)),
        App.globalPut(_count_key(choice.load()), App.globalGet(_count_key(choice.load())) + Int(1)),
        Approve(),
    )

    stop = Seq(
        Assert(Txn.sender() == App.globalGet(admin_key)),
        Assert(App.globalGet(active_key) == Int(1)),
        App.globalPut(active_key, Int(0)),
        Approve(),
    )

    return Cond(
        [Txn.application_id() == Int(0), on_create],
        [
            Txn.on_completion() == OnComplete.NoOp,
            Cond(
                [Txn.application_args[0] == Bytes("authorize"), authorize],
                [Txn.application_args[0] == Bytes("vote"), vote],
                [Txn.application_args[0] == Bytes("stop"), stop],
            ),
        ],
        [Txn.on_completion() == OnComplete.OptIn, Reject()],
        [Txn.on_completion() == OnComplete.CloseOut, Reject()],
        [Txn.on_completion() == OnComplete.UpdateApplication, Reject()],
        [Txn.on_completion() == OnComplete.DeleteApplication, Reject()],
    )


def build_clear_program() -> Expr:
    return Approve()


def compile_contract() -> tuple[str, str]:
    approval = compileTeal(
        build_approval_program(),
        mode=Mode.Application,
        version=TEAL_VERSION,
    )
    clear = compileTeal(
        build_clear_program(),
        mode=Mode.Application,
        version=TEAL_VERSION,
    )
    return approval, clear


if __name__ == "__main__":
    approval_teal, clear_teal = compile_contract()
    print(approval_teal)
    print(clear_teal)
