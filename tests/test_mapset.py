from pathlib import Path
import tempfile
import unittest
from unittest import mock

from osu_volume_helper import mapset, osu_format

from samples import HARD, MALFORMED, NORMAL, NORMAL_PATCHED, write_mapset


class MapsetTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.folder = Path(self._tmp.name)

    def tearDown(self) -> None:
        self._tmp.cleanup()


class TestFindSiblings(MapsetTestCase):
    def test_other_osu_files_sorted(self) -> None:
        files = write_mapset(self.folder, {"a.osu": HARD, "c.OSU": NORMAL, "b.osu": NORMAL, "notes.txt": "hi", "a.osb": ""})
        (self.folder / "d.osu").mkdir()
        siblings = mapset.find_siblings(files["a.osu"])
        self.assertEqual([p.name for p in siblings], ["b.osu", "c.OSU"])

    def test_no_siblings(self) -> None:
        files = write_mapset(self.folder, {"a.osu": HARD})
        self.assertEqual(mapset.find_siblings(files["a.osu"]), [])

    def test_unlistable_folder(self) -> None:
        with self.assertRaises(mapset.MapsetError):
            mapset.find_siblings(self.folder / "missing" / "a.osu")


class TestCopyVolume(MapsetTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.files = write_mapset(self.folder, {
            "song [Hard].osu": HARD,
            "song [Normal].osu": NORMAL,
            "song [Easy].osu": MALFORMED,
            "song [Insane].osu": HARD.replace("Version:Hard", "Version:Insane"),
        })

    def test_updates_siblings_and_skips_broken(self) -> None:
        with self.assertLogs("osu_volume_helper.mapset", level="WARNING") as logs:
            report = mapset.copy_volume(self.files["song [Hard].osu"])
        self.assertEqual(report.profile_size, 4)
        self.assertEqual([r.path.name for r in report.results], ["song [Easy].osu", "song [Insane].osu", "song [Normal].osu"])
        self.assertEqual([r.path.name for r in report.updated], ["song [Normal].osu"])
        self.assertEqual([r.path.name for r in report.unchanged], ["song [Insane].osu"])
        self.assertEqual([r.path.name for r in report.skipped], ["song [Easy].osu"])
        self.assertIsInstance(report.skipped[0].error, mapset.TargetMalformedError)
        self.assertEqual(report.updated[0].changed_points, 3)
        self.assertTrue(any("song [Easy].osu" in line for line in logs.output))

        self.assertEqual(self.files["song [Normal].osu"].read_bytes(), NORMAL_PATCHED.encode("utf-8"))
        self.assertEqual(self.files["song [Easy].osu"].read_bytes(), MALFORMED.encode("utf-8"))
        self.assertEqual(self.files["song [Hard].osu"].read_bytes(), HARD.encode("utf-8"))

    def test_summary(self) -> None:
        report = mapset.copy_volume(self.files["song [Hard].osu"])
        summary = report.summary()
        self.assertIn("Updated 1 of 3 difficulties", summary)
        self.assertIn("1 already matching, 1 skipped", summary)
        self.assertIn("song [Normal].osu", summary)
        self.assertIn("song [Easy].osu", summary)

    def test_explicit_targets(self) -> None:
        report = mapset.copy_volume(
            self.files["song [Hard].osu"],
            [self.files["song [Normal].osu"], self.files["song [Hard].osu"]],
        )
        # the source is never its own target
        self.assertEqual([r.path.name for r in report.results], ["song [Normal].osu"])
        self.assertEqual(report.results[0].status, "updated")

    def test_missing_target_is_skipped(self) -> None:
        report = mapset.copy_volume(
            self.files["song [Hard].osu"],
            [self.folder / "song [Expert].osu", self.files["song [Normal].osu"]],
        )
        self.assertEqual([r.status for r in report.results], ["skipped", "updated"])
        self.assertIsInstance(report.results[0].error, mapset.TargetUnreadableError)

    def test_undecodable_target_is_skipped(self) -> None:
        bad = self.folder / "song [Expert].osu"
        bad.write_bytes(b"osu file format v14\n\xff\xfe\xfa\n")
        report = mapset.copy_volume(self.files["song [Hard].osu"], [bad])
        self.assertIsInstance(report.results[0].error, mapset.TargetUnreadableError)

    def test_unwritable_target_is_skipped(self) -> None:
        with mock.patch.object(osu_format, "export_file", side_effect=PermissionError("denied")):
            report = mapset.copy_volume(self.files["song [Hard].osu"], [self.files["song [Normal].osu"]])
        self.assertEqual(report.results[0].status, "skipped")
        self.assertIsInstance(report.results[0].error, mapset.TargetUnwritableError)
        self.assertIn("denied", str(report.results[0].error))
        self.assertEqual(self.files["song [Normal].osu"].read_bytes(), NORMAL.encode("utf-8"))

    def test_dry_run_writes_nothing(self) -> None:
        report = mapset.copy_volume(self.files["song [Hard].osu"], dry_run=True)
        self.assertEqual([r.path.name for r in report.updated], ["song [Normal].osu"])
        self.assertEqual(self.files["song [Normal].osu"].read_bytes(), NORMAL.encode("utf-8"))
        self.assertIn("Would update 1 of 3", report.summary())

    def test_backup(self) -> None:
        backup_dir = self.folder / "backup"
        mapset.copy_volume(self.files["song [Hard].osu"], backup_dir=backup_dir)
        backups = list(backup_dir.iterdir())
        # only files that actually change are backed up
        self.assertEqual(len(backups), 1)
        self.assertTrue(backups[0].name.startswith("song [Normal]_"))
        self.assertEqual(backups[0].read_bytes(), NORMAL.encode("utf-8"))

    def test_backup_same_stem_targets(self) -> None:
        backup_dir = self.folder / "backup"
        targets = []
        for sub in ("x", "y"):
            (self.folder / sub).mkdir()
            targets.append(write_mapset(self.folder / sub, {"diff.osu": NORMAL})["diff.osu"])
        for jobs in (1, 2):
            with self.subTest(jobs=jobs):
                for t in targets:
                    t.write_bytes(NORMAL.encode("utf-8"))
                report = mapset.copy_volume(self.files["song [Hard].osu"], targets, backup_dir=backup_dir, jobs=jobs)
                self.assertEqual([r.status for r in report.results], ["updated", "updated"])
        # every original is kept, even with the same name within the same second
        backups = sorted(backup_dir.iterdir())
        self.assertEqual(len(backups), 4)
        self.assertTrue(all(b.read_bytes() == NORMAL.encode("utf-8") for b in backups))

    def test_backup_file_does_not_overwrite(self) -> None:
        backup_dir = self.folder / "backup"
        target = self.files["song [Normal].osu"]
        first = mapset.backup_file(target, backup_dir)
        second = mapset.backup_file(target, backup_dir)
        self.assertNotEqual(first, second)
        self.assertEqual(len(list(backup_dir.iterdir())), 2)

    def test_parallel_matches_sequential(self) -> None:
        sequential = mapset.copy_volume(self.files["song [Hard].osu"], dry_run=True)
        parallel = mapset.copy_volume(self.files["song [Hard].osu"], dry_run=True, jobs=4)
        self.assertEqual(
            [(r.path, r.status, r.changed_points) for r in sequential.results],
            [(r.path, r.status, r.changed_points) for r in parallel.results],
        )
        mapset.copy_volume(self.files["song [Hard].osu"], jobs=4)
        self.assertEqual(self.files["song [Normal].osu"].read_bytes(), NORMAL_PATCHED.encode("utf-8"))

    def test_second_run_changes_nothing(self) -> None:
        mapset.copy_volume(self.files["song [Hard].osu"])
        report = mapset.copy_volume(self.files["song [Hard].osu"])
        self.assertEqual(report.updated, [])
        self.assertEqual(self.files["song [Normal].osu"].read_bytes(), NORMAL_PATCHED.encode("utf-8"))

    def test_insert_points(self) -> None:
        report = mapset.copy_volume(self.files["song [Hard].osu"], [self.files["song [Normal].osu"]], insert_points=True)
        # 1319 and 2053 are inserted, 1563 is inserted too, all three points change
        self.assertEqual(report.results[0].changed_points, 6)
        times = [tp.time for tp in osu_format.import_file(self.files["song [Normal].osu"]).timing_points]
        self.assertEqual(times, [15, 1319, 1400, 1563, 2053, 2500])


class TestSourceErrors(MapsetTestCase):
    def test_missing_source(self) -> None:
        with self.assertRaises(mapset.SourceUnreadableError):
            mapset.copy_volume(self.folder / "missing.osu")

    def test_malformed_source(self) -> None:
        files = write_mapset(self.folder, {"a.osu": MALFORMED, "b.osu": NORMAL})
        with self.assertRaises(mapset.SourceMalformedError) as cm:
            mapset.copy_volume(files["a.osu"])
        self.assertIn("a.osu", str(cm.exception))
        # nothing was touched
        self.assertEqual(files["b.osu"].read_bytes(), NORMAL.encode("utf-8"))

    def test_non_finite_source_time(self) -> None:
        files = write_mapset(self.folder, {"a.osu": HARD.replace("2053,-100", "nan,-100"), "b.osu": NORMAL})
        with self.assertRaises(mapset.SourceMalformedError) as cm:
            mapset.copy_volume(files["a.osu"])
        self.assertIn("nan", str(cm.exception))
        self.assertEqual(files["b.osu"].read_bytes(), NORMAL.encode("utf-8"))

    def test_no_targets_is_not_an_error(self) -> None:
        files = write_mapset(self.folder, {"a.osu": HARD})
        report = mapset.copy_volume(files["a.osu"])
        self.assertEqual(report.results, [])
        self.assertIn("nothing to do", report.summary())


if __name__ == "__main__":
    unittest.main()
