import unittest
from decimal import Decimal

from backend.csv_parser import (
    DEFAULT_CATEGORY,
    ColumnLayout,
    ColumnStrategy,
    parse_amount,
    parse_delimited_text,
    sniff_header,
)


class ParseAmountTests(unittest.TestCase):
    def test_brazilian_thousands_and_decimal_separators(self) -> None:
        self.assertEqual(parse_amount("1.234,56"), Decimal("1234.56"))
        self.assertEqual(parse_amount("1234,56"), Decimal("1234.56"))

    def test_strips_currency_symbol_and_spaces(self) -> None:
        self.assertEqual(parse_amount("R$ 42,00"), Decimal("42.0"))
        self.assertEqual(parse_amount('"-1.050,10"'), Decimal("-1050.10"))

    def test_plain_dot_decimal_is_parsed_as_is(self) -> None:
        self.assertEqual(parse_amount("-50.00"), Decimal("-50.00"))

    def test_not_a_number_returns_none(self) -> None:
        self.assertIsNone(parse_amount(""))
        self.assertIsNone(parse_amount(None))
        self.assertIsNone(parse_amount("abc"))
        self.assertIsNone(parse_amount("R$"))
        self.assertIsNone(parse_amount("NaN"))
        self.assertIsNone(parse_amount("Infinity"))


class FixedPositionTests(unittest.TestCase):
    def test_row_without_header_is_kept(self) -> None:
        rows = parse_delimited_text("01/03/2024,-50.00,Mercado,Alimentação")

        self.assertEqual(len(rows), 1)
        self.assertEqual(rows[0].date, "01/03/2024")
        self.assertEqual(rows[0].amount, Decimal("-50.00"))
        self.assertEqual(rows[0].description, "Mercado")
        self.assertEqual(rows[0].category, "Alimentação")

    def test_skips_header_when_second_cell_is_not_numeric(self) -> None:
        text = "Data;Valor;Descrição\r\n02/03/2024;1.200,00;Salário\r\n03/03/2024;-35,90;Padaria\n"

        rows = parse_delimited_text(text, ColumnStrategy.FIXED_POSITION)

        self.assertEqual([row.description for row in rows], ["Salário", "Padaria"])
        self.assertEqual(rows[0].amount, Decimal("1200.00"))
        self.assertEqual(rows[1].category, DEFAULT_CATEGORY)

    def test_malformed_rows_are_skipped_not_fatal(self) -> None:
        text = "\n".join(
            [
                "01/03/2024,10.00,Ok",
                "01/03/2024,abc,Bad amount",
                ",10.00,Missing date",
                "01/03/2024,10.00,",
                "01/03/2024,10.00",
                "02/03/2024,20.00,Also ok",
            ]
        )

        rows = parse_delimited_text(text)

        self.assertEqual([row.description for row in rows], ["Ok", "Also ok"])

    def test_quoted_fields_keep_embedded_separator(self) -> None:
        text = 'Data,Valor,Descrição\n"05/03/2024","1.234,56","Aluguel, março"'

        rows = parse_delimited_text(text)

        self.assertEqual(rows[0].amount, Decimal("1234.56"))
        self.assertEqual(rows[0].description, "Aluguel, março")

    def test_unclosed_quote_only_loses_its_own_row(self) -> None:
        text = '01/03/2024;"10,00;Mercado\n02/03/2024;20,00;Padaria\n03/03/2024;30,00;Farmacia'

        rows = parse_delimited_text(text, ColumnStrategy.FIXED_POSITION)

        self.assertEqual([row.description for row in rows], ["Padaria", "Farmacia"])
        self.assertEqual(rows[1].amount, Decimal("30.00"))

    def test_row_with_data_in_date_cell_is_skipped(self) -> None:
        text = "01/03/2024;10,00;Mercado\nData;10,00;Saldo\n02/03/2024;5,00;Padaria"

        rows = parse_delimited_text(text, ColumnStrategy.FIXED_POSITION)

        self.assertEqual([row.description for row in rows], ["Mercado", "Padaria"])

    def test_empty_input_yields_no_rows(self) -> None:
        self.assertEqual(parse_delimited_text(""), [])
        self.assertEqual(parse_delimited_text("\n  \r\n"), [])


class LabelSniffingTests(unittest.TestCase):
    def test_header_labels_are_detected(self) -> None:
        rows = parse_delimited_text(
            "data;valor;desc\n01/03/2024;100,00;Salário",
            ColumnStrategy.LABEL_SNIFFING,
        )

        self.assertEqual(len(rows), 1)
        self.assertEqual(rows[0].date, "01/03/2024")
        self.assertEqual(rows[0].amount, Decimal("100.00"))
        self.assertEqual(rows[0].description, "Salário")
        self.assertEqual(rows[0].category, DEFAULT_CATEGORY)

    def test_discovered_positions_override_fixed_order(self) -> None:
        text = "\n".join(
            [
                "Extrato;Conta 1234",
                "Histórico;Categoria;Data;Montante",
                "Farmácia;Saúde;04/03/2024;-80,00",
            ]
        )

        rows = parse_delimited_text(text, ColumnStrategy.LABEL_SNIFFING)

        self.assertEqual(len(rows), 1)
        self.assertEqual(rows[0].description, "Farmácia")
        self.assertEqual(rows[0].category, "Saúde")
        self.assertEqual(rows[0].amount, Decimal("-80.00"))

    def test_header_requires_date_and_amount_or_description(self) -> None:
        layout, start = sniff_header([["data", "coluna"], ["01/03/2024", "10"]])

        self.assertEqual(layout, ColumnLayout())
        self.assertEqual(start, 0)

    def test_header_beyond_scan_window_is_ignored(self) -> None:
        rows = [["x", "y", "z"] for _ in range(10)] + [["data", "valor", "desc"]]

        layout, start = sniff_header(rows)

        self.assertEqual(start, 0)
        self.assertEqual(layout, ColumnLayout())

    def test_falls_back_to_fixed_columns_without_header(self) -> None:
        rows = parse_delimited_text(
            "01/03/2024,-12.50,Café\n02/03/2024,-8.00,Pão",
            ColumnStrategy.LABEL_SNIFFING,
        )

        self.assertEqual([row.description for row in rows], ["Café", "Pão"])

    def test_row_with_data_in_date_cell_is_skipped(self) -> None:
        text = "01/03/2024;10,00;Mercado\nData;10,00;Saldo\n02/03/2024;5,00;Padaria"

        rows = parse_delimited_text(text, ColumnStrategy.LABEL_SNIFFING)

        self.assertEqual([row.description for row in rows], ["Mercado", "Padaria"])

    def test_unclosed_quote_only_loses_its_own_row(self) -> None:
        text = 'data;valor;desc\n01/03/2024;"10,00;Mercado\n02/03/2024;20,00;Padaria'

        rows = parse_delimited_text(text, ColumnStrategy.LABEL_SNIFFING)

        self.assertEqual([row.description for row in rows], ["Padaria"])

    def test_strategies_disagree_on_reordered_columns(self) -> None:
        text = "Descrição,Data,Valor\nMercado,01/03/2024,-20.00"

        fixed = parse_delimited_text(text, ColumnStrategy.FIXED_POSITION)
        sniffed = parse_delimited_text(text, ColumnStrategy.LABEL_SNIFFING)

        self.assertEqual(fixed, [])
        self.assertEqual(len(sniffed), 1)
        self.assertEqual(sniffed[0].description, "Mercado")
        self.assertEqual(sniffed[0].amount, Decimal("-20.00"))


if __name__ == "__main__":
    unittest.main()
