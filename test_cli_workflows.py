from __future__ import annotations

import json
import os
import subprocess
import sys
import tarfile
import tempfile
import unittest
from pathlib import Path

from car_fixtures import RepoFixture, sample_records
from carrepo.car import CarReader


class CLIIntegrationTests(unittest.TestCase):
    def _env(self):
        env = os.environ.copy()
        repo_root = Path(__file__).resolve().parent
        existing = env.get("PYTHONPATH", "")
        env["PYTHONPATH"] = str(repo_root) if not existing else f"{repo_root}{os.pathsep}{existing}"
        return env

    def _run(self, cmd, expect):
        proc = subprocess.run(
            cmd,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            env=self._env(),
        )
        if expect is not None and proc.returncode != expect:
            raise AssertionError(
                f"CLI exited {proc.returncode}, expected {expect}\nCommand: {' '.join(cmd)}\nSTDOUT:\n{proc.stdout}\nSTDERR:\n{proc.stderr}"
            )
        return proc

    def run_cli(self, args, *, expect: int | None = 0):
        return self._run([sys.executable, "-m", "carrepo.cli"] + list(args), expect)

    def run_tamper(self, args, *, expect: int | None = 0):
        script = Path(__file__).resolve().parent / "scripts" / "tamper.py"
        return self._run([sys.executable, str(script)] + list(args), expect)

    def make_repo(self, n: int = 10):
        tmp = tempfile.TemporaryDirectory()
        self.addCleanup(tmp.cleanup)
        root = Path(tmp.name)
        records = sample_records(n)
        fx = RepoFixture(records)
        car = root / "repo.car"
        car.write_bytes(fx.car())
        return root, car, fx

    def test_export_to_tar(self):
        root, car, fx = self.make_repo()
        out = root / "out.tar"
        proc = self.run_cli(["export", str(car), "-o", str(out)])
        self.assertIn("Done: exported 10 record(s)", proc.stdout)
        with tarfile.open(out) as tar:
            names = tar.getnames()
            self.assertEqual(names, [f"repo/{k}.json" for k in fx.sorted_keys()])
            body = json.loads(tar.extractfile(names[-1]).read().decode("utf-8"))
        self.assertEqual(body, fx.records[fx.sorted_keys()[-1]])

    def test_export_default_output_and_quiet(self):
        root, car, _fx = self.make_repo(3)
        proc = self.run_cli(["export", str(car), "--quiet", "--prefix", "backup"])
        self.assertNotIn("exporting:", proc.stdout)
        with tarfile.open(root / "repo.tar") as tar:
            self.assertTrue(all(n.startswith("backup/") for n in tar.getnames()))

    def test_unpack_with_exists_policy(self):
        root, car, fx = self.make_repo(4)
        outdir = root / "unpacked"
        self.run_cli(["unpack", str(car), "--outdir", str(outdir)])
        first = outdir.joinpath(*f"{fx.sorted_keys()[0]}.json".split("/"))
        self.assertTrue(first.exists())
        first.write_text("mine", encoding="utf-8")
        proc = self.run_cli(["unpack", str(car), "--outdir", str(outdir), "--exists", "skip"])
        self.assertIn("skipping:", proc.stdout)
        self.assertIn("skipped=4", proc.stdout)
        self.assertEqual(first.read_text(encoding="utf-8"), "mine")
        self.run_cli(["unpack", str(car), "--outdir", str(outdir), "--exists", "fail"], expect=2)

    def test_list_and_info(self):
        _root, car, fx = self.make_repo(8)
        listed = self.run_cli(["list", str(car)]).stdout.splitlines()
        self.assertEqual([line.split("\t")[0] for line in listed], fx.sorted_keys())
        self.assertEqual(listed[0].split("\t")[1], str(fx.record_cids[fx.sorted_keys()[0]]))

        info = self.run_cli(["info", str(car)]).stdout
        self.assertIn("DID: did:plc:testrepo", info)
        self.assertIn(f"Data: {fx.data_cid}", info)
        self.assertIn("Records: 8", info)
        self.assertIn("app.bsky.feed.post: 2", info)

    def test_verify_detects_tampering(self):
        _root, car, _fx = self.make_repo(6)
        self.assertIn("OK", self.run_cli(["verify", str(car)]).stdout)
        self.run_tamper(["block", str(car), "--index", "2", "--within", "1"])
        proc = self.run_cli(["verify", str(car)], expect=1)
        self.assertIn("FAIL: HashMismatch", proc.stdout)
        res = json.loads(self.run_cli(["verify", str(car), "--json"], expect=1).stdout)
        self.assertEqual(res["status"], "fail")
        self.assertTrue(res["damaged"])

    def test_tamper_by_offset_reports_location(self):
        _root, car, _fx = self.make_repo(5)
        with open(car, "rb") as f:
            reader = CarReader(f)
            blocks = list(reader.blocks())
        last = blocks[-1]
        payload_at = os.path.getsize(car) - len(last.data)
        original = car.read_bytes()
        proc = self.run_tamper(["by-offset", str(car), "--offset", str(payload_at + 2)])
        self.assertIn(f"block {len(blocks) - 1} payload", proc.stdout)
        damaged = car.read_bytes()
        self.assertEqual(damaged[payload_at + 2], original[payload_at + 2] ^ 0xFF)
        self.assertEqual(damaged[: payload_at + 2], original[: payload_at + 2])
        self.assertIn("FAIL: HashMismatch", self.run_cli(["verify", str(car)], expect=1).stdout)

        proc = self.run_tamper(["by-offset", str(car), "--offset", "1"])
        self.assertIn("in header", proc.stdout)
        proc = self.run_tamper(["by-offset", str(car), "--offset", str(len(original))], expect=2)
        self.assertIn("Error:", proc.stderr)
        self.assertEqual(car.stat().st_size, len(original))

    def test_tamper_random_is_seeded_and_stays_in_payloads(self):
        root, car, fx = self.make_repo(6)
        twin = root / "twin.car"
        twin.write_bytes(car.read_bytes())
        original = car.read_bytes()
        proc = self.run_tamper(["random", str(car), "--count", "3", "--seed", "7"])
        self.assertIn("Flipped 3 payload byte(s)", proc.stdout)
        self.run_tamper(["random", str(twin), "--count", "3", "--seed", "7"])
        damaged = car.read_bytes()
        self.assertEqual(damaged, twin.read_bytes())
        changed = [i for i in range(len(original)) if damaged[i] != original[i]]
        self.assertEqual(len(changed), 3)

        payload = set()
        reader = CarReader.from_bytes(original)
        for blk in reader.blocks():
            payload.update(range(reader.pos - len(blk.data), reader.pos))
        self.assertTrue(set(changed) <= payload)
        self.assertIn("FAIL: HashMismatch", self.run_cli(["verify", str(car)], expect=1).stdout)
        self.run_tamper(["random", str(twin), "--count", str(len(original) + 1)], expect=2)

    def test_export_reports_errors(self):
        root, car, _fx = self.make_repo(2)
        proc = self.run_cli(["export", str(root / "missing.car")], expect=2)
        self.assertIn("Error:", proc.stderr)
        car.write_bytes(car.read_bytes()[:20])
        proc = self.run_cli(["export", str(car)], expect=2)
        self.assertIn("MalformedContainer", proc.stderr)


if __name__ == "__main__":
    unittest.main()
