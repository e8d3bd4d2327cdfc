import io
import pytest
from decimal import Decimal
from pydantic import ValidationError

from errors import InputFormatError
from models import AccountSnapshot, Instruction, InstructionType, MAX_AMOUNT
from readers import read_instructions, read_instructions_from_path
from writers import write_accounts


def read(text: str):
    return list(read_instructions(io.StringIO(text)))


class TestInstructionModel:
    """Typed instruction validation."""

    def test_wire_tx_becomes_own_id_for_deposits(self):
        instruction = Instruction.model_validate({"type": "deposit", "client": "1", "tx": "7", "amount": "2.5"})

        assert instruction.tx_id == 7
        assert instruction.target_id is None
        assert instruction.reference_id == 7

    def test_wire_tx_becomes_target_for_disputes(self):
        instruction = Instruction.model_validate({"type": "Dispute", "client": "1", "tx": "7", "amount": ""})

        assert instruction.type == InstructionType.dispute
        assert instruction.target_id == 7
        assert instruction.tx_id is None
        assert instruction.amount is None

    def test_amount_is_ignored_for_disputes(self):
        instruction = Instruction.model_validate({"type": "chargeback", "client": "3", "tx": "1", "amount": "oops"})

        assert instruction.amount is None

    @pytest.mark.parametrize("record", [
        {"type": "refund", "client": "1", "tx": "1", "amount": "1.0"},
        {"type": "deposit", "client": "70000", "tx": "1", "amount": "1.0"},
        {"type": "deposit", "client": "-1", "tx": "1", "amount": "1.0"},
        {"type": "deposit", "client": "1", "tx": "4294967296", "amount": "1.0"},
        {"type": "deposit", "client": "1", "tx": "1", "amount": "-1.0"},
        {"type": "deposit", "client": "1", "tx": "1", "amount": "NaN"},
        {"type": "deposit", "client": "1", "tx": "1", "amount": "1000000000000001"},
        {"type": "withdrawal", "client": "1", "tx": "1", "amount": "1e27"},
        {"type": "deposit", "client": "1", "tx": "1", "amount": "0.00000000000000000000000000001"},
        {"type": "deposit", "client": "1", "tx": "1", "amount": ""},
        {"type": "withdrawal", "client": "1", "tx": "1"},
        {"type": "dispute", "client": "1"},
    ])
    def test_invalid_records(self, record):
        with pytest.raises(ValidationError):
            Instruction.model_validate(record)


class TestReader:
    """CSV parsing collaborator."""

    def test_reads_rows_in_order(self):
        instructions = read(
            "type, client, tx, amount\n"
            "deposit, 1, 1, 1.0\n"
            "deposit, 2, 2, 2.0\n"
            "withdrawal, 1, 3, 1.5\n"
            "dispute, 1, 1,\n"
        )

        assert [i.type for i in instructions] == [
            InstructionType.deposit,
            InstructionType.deposit,
            InstructionType.withdrawal,
            InstructionType.dispute,
        ]
        assert instructions[2].amount == Decimal("1.5")
        assert instructions[3].target_id == 1

    def test_short_rows_without_amount_column(self):
        instructions = read(
            "type,client,tx,amount\n"
            "deposit,1,1,4.0\n"
            "resolve,1,1\n"
        )

        assert len(instructions) == 2
        assert instructions[1].type == InstructionType.resolve

    def test_case_insensitive_type_and_header(self):
        instructions = read("Type,Client,TX,Amount\nDEPOSIT,1,1,4.0\n")

        assert instructions[0].type == InstructionType.deposit

    def test_malformed_rows_are_dropped(self):
        instructions = read(
            "type,client,tx,amount\n"
            "deposit,1,1,1.0\n"
            "deposit,one,2,1.0\n"
            "teleport,1,3,1.0\n"
            "\n"
            "withdrawal,1,4,\n"
            "deposit,1,5,2.0\n"
        )

        assert [i.tx_id for i in instructions] == [1, 5]

    def test_largest_amount_is_accepted(self):
        instructions = read(f"type,client,tx,amount\ndeposit,1,1,{MAX_AMOUNT}\n")

        assert instructions[0].amount == MAX_AMOUNT

    def test_oversized_amount_row_is_dropped(self):
        instructions = read(
            "type,client,tx,amount\n"
            "deposit,1,1,1000000000000000000000000\n"
            "deposit,1,2,1.0\n"
        )

        assert [i.tx_id for i in instructions] == [2]

    def test_byte_order_mark_before_header(self):
        instructions = read("\ufefftype,client,tx,amount\ndeposit,1,1,1.0\n")

        assert len(instructions) == 1
        assert instructions[0].type == InstructionType.deposit

    def test_header_without_required_columns(self):
        with pytest.raises(InputFormatError) as exc_info:
            read("kind,customer,id,value\ndeposit,1,1,1.0\n")

        assert "type" in str(exc_info.value)

    def test_empty_input(self):
        assert read("") == []

    def test_missing_file_fails_on_open(self, tmp_path):
        with pytest.raises(OSError):
            read_instructions_from_path(tmp_path / "missing.csv")

    def test_reads_from_path(self, tmp_path):
        path = tmp_path / "input.csv"
        path.write_text("type,client,tx,amount\ndeposit,1,1,1.0\n")

        assert len(list(read_instructions_from_path(path))) == 1

    def test_reads_from_path_with_byte_order_mark(self, tmp_path):
        path = tmp_path / "input.csv"
        path.write_bytes(b"\xef\xbb\xbftype,client,tx,amount\ndeposit,1,1,1.0\n")

        assert [i.tx_id for i in read_instructions_from_path(path)] == [1]


class TestWriter:
    """CSV display collaborator."""

    def test_write_accounts(self):
        output = io.StringIO()
        write_accounts([
            AccountSnapshot(client=1, available=Decimal("1.5000"), held=Decimal("0.0000"),
                            total=Decimal("1.5000"), locked=False),
            AccountSnapshot(client=2, available=Decimal("0.0000"), held=Decimal("0.0000"),
                            total=Decimal("0.0000"), locked=True),
        ], output)

        assert output.getvalue() == (
            "client,available,held,total,locked\n"
            "1,1.5000,0.0000,1.5000,false\n"
            "2,0.0000,0.0000,0.0000,true\n"
        )

    def test_write_no_accounts(self):
        output = io.StringIO()
        write_accounts([], output)

        assert output.getvalue() == "client,available,held,total,locked\n"
