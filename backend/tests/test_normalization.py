"""Unit tests for material and client name normalization."""

import unittest

from pricememory.entity_resolution.normalization import normalize, normalize_client, normalize_material


class MaterialNormalizationTests(unittest.TestCase):
    def test_dimensions_and_percent_ranges_are_canonical(self) -> None:
        self.assertEqual(normalize_material("fire brick 230 x 114 x 75"), "FIRE BRICK 230X114X75")
        self.assertEqual(normalize_material("Alumina 40 % - 45 %"), "ALUMINA 40%-45%")
        self.assertEqual(normalize_material("FIRE BRICK 30%-35% AL2O3 STD"), "FIRE BRICK 30%-35% AL2O3 STD")

    def test_make_prefix_is_collapsed_to_brand(self) -> None:
        self.assertEqual(
            normalize_material("Calderys  make   fire brick 230x114x75"),
            "CALDERYS FIRE BRICK 230X114X75",
        )

    def test_all_punctuation_except_percent_and_hyphen_is_stripped(self) -> None:
        self.assertEqual(normalize_material("Ceramic blanket 1.5 mm."), "CERAMIC BLANKET 1 5 MM")
        self.assertEqual(normalize_material("Mortar / castable (mix no.1)"), "MORTAR CASTABLE MIX NO 1")
        self.assertEqual(normalize_material("Alumina 12.5%-20%"), "ALUMINA 12 5%-20%")

    def test_normalization_is_idempotent(self) -> None:
        samples = [
            "Calderys make fire brick 230 x 114 x 75 (IS 8)",
            "  insulation   brick, 40 % - 45 % alumina ",
            "Mortar / castable mix no.1",
        ]
        for sample in samples:
            once = normalize_material(sample)
            self.assertEqual(normalize_material(once), once)

    def test_empty_input_normalizes_to_empty_string(self) -> None:
        self.assertEqual(normalize_material(None), "")
        self.assertEqual(normalize_material(""), "")


class ClientNormalizationTests(unittest.TestCase):
    def test_honorific_prefix_and_legal_suffix_are_removed(self) -> None:
        self.assertEqual(normalize_client("M/s. Acme Refractories Pvt. Ltd."), "ACME REFRACTORIES")
        self.assertEqual(normalize_client("Tata Steel Limited"), "TATA STEEL")
        self.assertEqual(normalize_client("A & B Co."), "A & B")

    def test_client_normalization_is_idempotent(self) -> None:
        for sample in ("M/S ACME PVT LTD", "Messrs. Jindal Steel & Power Ltd", "acme-industries llp"):
            once = normalize_client(sample)
            self.assertEqual(normalize_client(once), once)

    def test_dispatch_by_kind(self) -> None:
        self.assertEqual(normalize("client", "Acme Pvt Ltd"), "ACME")
        self.assertEqual(normalize("material", "acme pvt ltd"), "ACME PVT LTD")


if __name__ == "__main__":
    unittest.main()
