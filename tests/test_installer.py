import json
import shutil
import tempfile
import unittest
from contextlib import contextmanager
from pathlib import Path
from unittest.mock import patch

import httpx

from skillport.client import HostingClient
from skillport.config import PrivateRepoConfig, SkillsConfig
from skillport.errors import (
    FilesystemError,
    GitCloneError,
    InvalidSourceError,
    NetworkError,
    SkillsError,
    UnknownAgentError,
)
from skillport.git import scoped_temp_dir
from skillport.installer import (
    SkillInstaller,
    _replace_directory,
    decide_install_action,
    install_skill_for_agent,
    is_skill_installed,
    list_installed_skills,
)
from skillport.skill_lock import SkillLockEntry, read_skill_lock

SKILL_MD = "---\nname: PDF Tools\ndescription: Work with PDFs\n---\n\n# PDF Tools\n"


class FakeFetcher:
    """Copies a prepared directory into a scoped temp dir, like a real clone."""

    def __init__(self, src: Path, error: Exception | None = None) -> None:
        self.src = src
        self.error = error
        self.calls = 0
        self.temp_dirs: list[Path] = []

    @contextmanager
    def _materialize(self, source):
        self.calls += 1
        if self.error is not None:
            raise self.error
        with scoped_temp_dir() as tmp:
            self.temp_dirs.append(tmp)
            repo = tmp / "repo"
            shutil.copytree(self.src, repo)
            yield repo

    def materialize(self, source):
        return self._materialize(source)


class FakeHosting:
    def __init__(self, private: bool = False, private_error: Exception | None = None) -> None:
        self.private = private
        self.private_error = private_error
        self.private_calls = 0

    def is_repo_private(self, owner: str, repo: str) -> bool:
        self.private_calls += 1
        if self.private_error is not None:
            raise self.private_error
        return self.private

    def fetch_skill_folder_hash(self, source, skill_path=None):
        return "tree123"


class InstallerTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self._td = tempfile.TemporaryDirectory()
        self.root = Path(self._td.name)
        self.src = self.root / "src"
        self.project = self.root / "project"
        self.lock_path = self.root / "state" / "lock.json"
        self.src.mkdir()
        self.project.mkdir()
        (self.src / "SKILL.md").write_text(SKILL_MD, encoding="utf-8")
        (self.src / "reference.md").write_text("# Reference\n", encoding="utf-8")

    def tearDown(self) -> None:
        self._td.cleanup()

    def installer(self, *, config: SkillsConfig | None = None, fetcher=None, hosting=None) -> SkillInstaller:
        return SkillInstaller(
            config=config or SkillsConfig(),
            fetcher=fetcher or FakeFetcher(self.src),
            client=hosting or FakeHosting(),
            lock_path=self.lock_path,
            cwd=self.project,
        )

    def skill_path(self, agent_dir: str = ".claude/skills") -> Path:
        return self.project / agent_dir / "pdf-tools"


class TestDecideInstallAction(unittest.TestCase):
    def setUp(self) -> None:
        self.entry = SkillLockEntry(name="x", source={}, content_hash="sha256:a", agents=("codex",))

    def test_matrix(self) -> None:
        self.assertEqual(decide_install_action(None, "sha256:a", "codex"), "installed")
        self.assertEqual(decide_install_action(self.entry, "sha256:a", "codex"), "skipped")
        self.assertEqual(decide_install_action(self.entry, "sha256:b", "codex"), "updated")
        self.assertEqual(decide_install_action(self.entry, "sha256:a", "cursor"), "installed")
        self.assertEqual(decide_install_action(self.entry, "sha256:a", "codex", force_update=True), "updated")


class TestInstallEndToEnd(InstallerTestCase):
    def test_install_then_noop(self) -> None:
        fetcher = FakeFetcher(self.src)
        installer = self.installer(fetcher=fetcher)

        results = installer.install_skill_for_agent("acme/skill-pack#main", "claude-code", "copy")

        self.assertEqual([(r.skill_name, r.agent, r.action) for r in results], [("pdf-tools", "claude-code", "installed")])
        self.assertEqual(results[0].path, self.skill_path())
        self.assertEqual((self.skill_path() / "reference.md").read_text(encoding="utf-8"), "# Reference\n")

        lock = read_skill_lock(self.lock_path)
        entry = lock.skills["pdf-tools"]
        self.assertEqual(entry.agents, ("claude-code",))
        self.assertEqual(entry.source["kind"], "git-shorthand")
        self.assertEqual(entry.source["ref"], "main")
        self.assertEqual(entry.folder_hash, "tree123")
        self.assertTrue(entry.content_hash.startswith("sha256:"))
        self.assertTrue(all(not p.exists() for p in fetcher.temp_dirs))

        lock_text = self.lock_path.read_text(encoding="utf-8")
        with patch("skillport.installer.write_skill_lock") as write, patch("skillport.installer._replace_directory") as copy:
            again = installer.install_skill_for_agent("acme/skill-pack#main", "claude-code", "copy")
        self.assertEqual([r.action for r in again], ["skipped"])
        write.assert_not_called()
        copy.assert_not_called()
        self.assertEqual(self.lock_path.read_text(encoding="utf-8"), lock_text)
        self.assertEqual(fetcher.calls, 2)

    def test_git_mode_installs_copy_then_noop(self) -> None:
        installer = self.installer()

        results = installer.install_skill_for_agent("acme/skill-pack#main", "claude-code", "git")

        self.assertEqual([(r.skill_name, r.action) for r in results], [("pdf-tools", "installed")])
        self.assertEqual(results[0].path, self.skill_path())
        self.assertIsNone(results[0].canonical_path)
        self.assertFalse(self.skill_path().is_symlink())
        self.assertEqual((self.skill_path() / "SKILL.md").read_text(encoding="utf-8"), SKILL_MD)
        entry = read_skill_lock(self.lock_path).skills["pdf-tools"]
        self.assertEqual(entry.agents, ("claude-code",))
        self.assertEqual(entry.source["kind"], "git-shorthand")

        with patch("skillport.installer.write_skill_lock") as write, patch("skillport.installer._replace_directory") as copy:
            again = installer.install_skill_for_agent("acme/skill-pack#main", "claude-code", "git")
        self.assertEqual([r.action for r in again], ["skipped"])
        write.assert_not_called()
        copy.assert_not_called()

    def test_content_change_updates(self) -> None:
        installer = self.installer()
        installer.install_skill_for_agent("acme/skill-pack", "claude-code")
        first = read_skill_lock(self.lock_path).skills["pdf-tools"]

        (self.src / "reference.md").write_text("# Reference v2\n", encoding="utf-8")
        (self.src / "extra.md").write_text("new\n", encoding="utf-8")
        results = installer.install_skill_for_agent("acme/skill-pack", "claude-code")

        self.assertEqual(results[0].action, "updated")
        second = read_skill_lock(self.lock_path).skills["pdf-tools"]
        self.assertNotEqual(second.content_hash, first.content_hash)
        self.assertEqual(second.installed_at, first.installed_at)
        self.assertIsNotNone(second.updated_at)
        self.assertEqual((self.skill_path() / "reference.md").read_text(encoding="utf-8"), "# Reference v2\n")
        self.assertTrue((self.skill_path() / "extra.md").is_file())

    def test_removed_files_do_not_linger(self) -> None:
        installer = self.installer()
        installer.install_skill_for_agent("acme/skill-pack", "claude-code")
        (self.src / "reference.md").unlink()
        installer.install_skill_for_agent("acme/skill-pack", "claude-code")
        self.assertFalse((self.skill_path() / "reference.md").exists())

    def test_second_agent_is_added(self) -> None:
        installer = self.installer()
        installer.install_skill_for_agent("acme/skill-pack", "claude-code")
        results = installer.install_skill_for_agent("acme/skill-pack", "cursor")

        self.assertEqual(results[0].action, "installed")
        self.assertTrue(self.skill_path(".cursor/skills").is_dir())
        self.assertEqual(read_skill_lock(self.lock_path).skills["pdf-tools"].agents, ("claude-code", "cursor"))
        self.assertTrue(installer.is_skill_installed("cursor", "PDF Tools"))
        self.assertEqual([s.name for s in installer.list_installed_skills("claude-code")], ["pdf-tools"])

    def test_content_change_drops_stale_agents(self) -> None:
        installer = self.installer()
        installer.install_skill_for_agent("acme/skill-pack", "claude-code")
        installer.install_skill_for_agent("acme/skill-pack", "cursor")

        (self.src / "reference.md").write_text("changed\n", encoding="utf-8")
        installer.install_skill_for_agent("acme/skill-pack", "claude-code")
        self.assertEqual(read_skill_lock(self.lock_path).skills["pdf-tools"].agents, ("claude-code",))

        results = installer.install_skill_for_agent("acme/skill-pack", "cursor")
        self.assertEqual(results[0].action, "installed")
        self.assertEqual((self.skill_path(".cursor/skills") / "reference.md").read_text(encoding="utf-8"), "changed\n")

    def test_default_agents_from_config(self) -> None:
        installer = self.installer(config=SkillsConfig(default_agents=("codex", "cursor")))
        results = installer.install_skill_for_agent("acme/skill-pack")
        self.assertEqual([r.agent for r in results], ["codex", "cursor"])

    def test_symlink_mode_links_to_canonical_copy(self) -> None:
        results = self.installer().install_skill_for_agent("acme/skill-pack", "claude-code", "symlink")

        canonical = self.project / ".agents" / "skills" / "pdf-tools"
        self.assertEqual(results[0].canonical_path, canonical)
        self.assertTrue((canonical / "SKILL.md").is_file())
        self.assertTrue(self.skill_path().is_symlink())
        self.assertEqual(self.skill_path().resolve(), canonical.resolve())

    def test_symlink_mode_falls_back_to_copy(self) -> None:
        with patch("skillport.installer.os.symlink", side_effect=OSError("not permitted")):
            self.installer().install_skill_for_agent("acme/skill-pack", "claude-code", "symlink")
        self.assertFalse(self.skill_path().is_symlink())
        self.assertTrue((self.skill_path() / "SKILL.md").is_file())

    def test_local_source_with_default_fetcher(self) -> None:
        installer = SkillInstaller(
            config=SkillsConfig(),
            client=FakeHosting(),
            lock_path=self.lock_path,
            cwd=self.project,
        )
        with installer:
            results = installer.install_skill_for_agent(str(self.src), "codex")
        self.assertEqual(results[0].action, "installed")
        self.assertTrue(self.src.is_dir())
        self.assertIsNone(read_skill_lock(self.lock_path).skills["pdf-tools"].folder_hash)

    def test_module_level_helper(self) -> None:
        results = install_skill_for_agent(
            "acme/skill-pack",
            "codex",
            config=SkillsConfig(),
            fetcher=FakeFetcher(self.src),
            client=FakeHosting(),
            lock_path=self.lock_path,
            cwd=self.project,
        )
        self.assertEqual(results[0].action, "installed")
        self.assertTrue(is_skill_installed("codex", "pdf-tools", lock_path=self.lock_path))
        self.assertEqual(len(list_installed_skills("codex", lock_path=self.lock_path)), 1)
        self.assertEqual(list_installed_skills("cursor", lock_path=self.lock_path), [])


class TestPrivateRepoPolicy(InstallerTestCase):
    ALWAYS = SkillsConfig(private_repo=PrivateRepoConfig(always_update=True))

    def test_private_source_always_recopies(self) -> None:
        hosting = FakeHosting(private=True)
        installer = self.installer(config=self.ALWAYS, hosting=hosting)
        installer.install_skill_for_agent("acme/private-pack", "claude-code")
        before = read_skill_lock(self.lock_path).skills["pdf-tools"]

        with patch("skillport.installer._replace_directory", wraps=_replace_directory) as copy:
            results = installer.install_skill_for_agent("acme/private-pack", "claude-code")

        self.assertEqual(results[0].action, "updated")
        copy.assert_called_once()
        after = read_skill_lock(self.lock_path).skills["pdf-tools"]
        self.assertEqual(after.content_hash, before.content_hash)
        self.assertEqual(after.folder_hash, "tree123")
        self.assertEqual(hosting.private_calls, 2)

    def test_public_source_still_skips(self) -> None:
        installer = self.installer(config=self.ALWAYS, hosting=FakeHosting(private=False))
        installer.install_skill_for_agent("acme/public-pack", "claude-code")
        results = installer.install_skill_for_agent("acme/public-pack", "claude-code")
        self.assertEqual(results[0].action, "skipped")

    def test_visibility_lookup_failure_counts_as_private(self) -> None:
        installer = self.installer(config=self.ALWAYS, hosting=FakeHosting(private_error=NetworkError("offline")))
        installer.install_skill_for_agent("acme/pack", "claude-code")
        with self.assertLogs("skillport.installer", level="WARNING"):
            results = installer.install_skill_for_agent("acme/pack", "claude-code")
        self.assertEqual(results[0].action, "updated")

    def test_policy_off_never_checks_visibility(self) -> None:
        hosting = FakeHosting(private=True)
        installer = self.installer(hosting=hosting)
        installer.install_skill_for_agent("acme/pack", "claude-code")
        installer.install_skill_for_agent("acme/pack", "claude-code")
        self.assertEqual(hosting.private_calls, 0)

    def test_non_github_source_is_private_without_api_call(self) -> None:
        hosting = FakeHosting(private=False)
        installer = self.installer(config=self.ALWAYS, hosting=hosting)
        installer.install_skill_for_agent("https://gitlab.com/acme/pack", "claude-code")
        results = installer.install_skill_for_agent("https://gitlab.com/acme/pack", "claude-code")

        self.assertEqual(results[0].action, "updated")
        self.assertEqual(hosting.private_calls, 0)
        self.assertIsNone(read_skill_lock(self.lock_path).skills["pdf-tools"].folder_hash)

    def test_html_api_body_counts_as_private(self) -> None:
        html = httpx.MockTransport(lambda request: httpx.Response(200, text="<html>rate limited</html>"))
        with HostingClient(transport=html) as client:
            installer = self.installer(config=self.ALWAYS, hosting=client)
            installer.install_skill_for_agent("acme/pack", "claude-code")
            with self.assertLogs("skillport.installer", level="WARNING"):
                results = installer.install_skill_for_agent("acme/pack", "claude-code")
        self.assertEqual(results[0].action, "updated")


class TestNonJsonHostingResponses(InstallerTestCase):
    def test_html_tree_body_installs_without_folder_hash(self) -> None:
        html = httpx.MockTransport(lambda request: httpx.Response(200, text="<html>rate limited</html>"))
        with HostingClient(transport=html) as client:
            results = self.installer(hosting=client).install_skill_for_agent("acme/skill-pack#main", "claude-code")

        self.assertEqual(results[0].action, "installed")
        self.assertTrue((self.skill_path() / "SKILL.md").is_file())
        entry = read_skill_lock(self.lock_path).skills["pdf-tools"]
        self.assertIsNone(entry.folder_hash)
        self.assertTrue(entry.content_hash.startswith("sha256:"))

    def test_folder_hash_lookup_runs_before_files_are_placed(self) -> None:
        class ExplodingHosting(FakeHosting):
            def fetch_skill_folder_hash(self, source, skill_path=None):
                raise RuntimeError("lookup blew up")

        installer = self.installer(hosting=ExplodingHosting())
        with self.assertRaises(RuntimeError):
            installer.install_skill_for_agent("acme/skill-pack", "claude-code")
        self.assertFalse(self.skill_path().exists())
        self.assertFalse(self.lock_path.exists())


class TestFailurePaths(InstallerTestCase):
    def test_fetch_failure_leaves_no_lock(self) -> None:
        error = GitCloneError("Failed to clone", url="https://github.com/acme/pack.git", is_auth_error=True)
        with self.assertRaises(GitCloneError):
            self.installer(fetcher=FakeFetcher(self.src, error=error)).install_skill_for_agent("acme/pack", "codex")
        self.assertFalse(self.lock_path.exists())

    def test_copy_failure_keeps_lock_and_cleans_temp(self) -> None:
        fetcher = FakeFetcher(self.src)
        installer = self.installer(fetcher=fetcher)
        installer.install_skill_for_agent("acme/pack", "codex")
        lock_text = self.lock_path.read_text(encoding="utf-8")
        (self.src / "reference.md").write_text("changed\n", encoding="utf-8")

        failure = FilesystemError("disk full", path="x")
        with patch("skillport.installer._replace_directory", side_effect=failure):
            with self.assertRaises(FilesystemError):
                installer.install_skill_for_agent("acme/pack", "codex")

        self.assertEqual(self.lock_path.read_text(encoding="utf-8"), lock_text)
        self.assertTrue(all(not p.exists() for p in fetcher.temp_dirs))

    def test_partial_failure_records_completed_targets(self) -> None:
        installer = self.installer(config=SkillsConfig(default_agents=("codex", "cursor")))
        calls = []

        def flaky(src, dest):
            calls.append(dest)
            if len(calls) == 2:
                raise FilesystemError("boom", path=str(dest))
            return _replace_directory(src, dest)

        with patch("skillport.installer._replace_directory", side_effect=flaky):
            with self.assertRaises(FilesystemError):
                installer.install_skill_for_agent("acme/pack")

        entry = read_skill_lock(self.lock_path).skills["pdf-tools"]
        self.assertEqual(entry.agents, ("codex",))
        self.assertTrue(self.skill_path(".codex/skills").is_dir())
        self.assertFalse(self.skill_path(".cursor/skills").exists())

    def test_no_skills_found(self) -> None:
        (self.src / "SKILL.md").unlink()
        with self.assertRaises(SkillsError):
            self.installer().install_skill_for_agent("acme/pack", "codex")
        self.assertFalse(self.lock_path.exists())

    def test_unknown_skill_name(self) -> None:
        with self.assertRaises(SkillsError):
            self.installer().install_skill_for_agent("acme/pack", "codex", skill_names=["nope"])

    def test_unknown_agent_fails_before_fetching(self) -> None:
        fetcher = FakeFetcher(self.src)
        with self.assertRaises(UnknownAgentError):
            self.installer(fetcher=fetcher).install_skill_for_agent("acme/pack", "not-an-agent")
        self.assertEqual(fetcher.calls, 0)

    def test_unknown_mode(self) -> None:
        fetcher = FakeFetcher(self.src)
        with self.assertRaises(SkillsError):
            self.installer(fetcher=fetcher).install_skill_for_agent("acme/pack", "codex", "zip")  # type: ignore[arg-type]
        self.assertEqual(fetcher.calls, 0)

    def test_git_mode_rejects_non_git_sources(self) -> None:
        fetcher = FakeFetcher(self.src)
        installer = self.installer(fetcher=fetcher)
        for source in ("https://docs.acme.com/skill.md", "https://acme.com/bundles/pack.zip", str(self.src)):
            with self.subTest(source=source):
                with self.assertRaises(InvalidSourceError):
                    installer.install_skill_for_agent(source, "codex", "git")
        self.assertEqual(fetcher.calls, 0)
        self.assertFalse(self.lock_path.exists())

    def test_kind_specific_entry_points_check_kind(self) -> None:
        installer = self.installer()
        with self.assertRaises(InvalidSourceError):
            installer.install_mintlify_skill_for_agent("acme/pack", "codex")
        with self.assertRaises(InvalidSourceError):
            installer.install_remote_skill_for_agent("https://docs.acme.com/skill.md", "codex")
        with self.assertRaises(InvalidSourceError):
            installer.install_well_known_skill_for_agent("https://acme.com/bundle.zip", "codex")


class TestMultiSkillSource(InstallerTestCase):
    def setUp(self) -> None:
        super().setUp()
        (self.src / "SKILL.md").unlink()
        (self.src / "reference.md").unlink()
        for folder, body in {
            "skills/alpha": "---\nname: Alpha\n---\n",
            "skills/broken": "---\ndescription: no name\n---\n",
            "skills/beta": "---\nname: beta\nagents: [cursor]\n---\n",
        }.items():
            (self.src / folder).mkdir(parents=True)
            (self.src / folder / "SKILL.md").write_text(body, encoding="utf-8")

    def test_malformed_sibling_is_skipped(self) -> None:
        with self.assertLogs("skillport.skills", level="WARNING"):
            results = self.installer().install_skill_for_agent("acme/pack", "codex")
        self.assertEqual([r.skill_name for r in results], ["alpha"])
        self.assertTrue((self.project / ".codex/skills/alpha/SKILL.md").is_file())

    def test_skill_names_filter(self) -> None:
        results = self.installer().install_skill_for_agent("acme/pack", "cursor", skill_names=["beta"])
        self.assertEqual([r.skill_name for r in results], ["beta"])

        raw = json.loads(self.lock_path.read_text(encoding="utf-8"))
        self.assertEqual(sorted(raw["skills"]), ["beta"])


class TestReplaceDirectory(unittest.TestCase):
    def test_failed_copy_preserves_previous_install(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            root = Path(td)
            src = root / "src"
            dest = root / "dest"
            src.mkdir()
            dest.mkdir()
            (src / "SKILL.md").write_text("new", encoding="utf-8")
            (dest / "SKILL.md").write_text("old", encoding="utf-8")

            with patch("skillport.installer.shutil.copytree", side_effect=OSError("disk full")):
                with self.assertRaises(FilesystemError):
                    _replace_directory(src, dest)

            self.assertEqual((dest / "SKILL.md").read_text(encoding="utf-8"), "old")
            self.assertEqual(sorted(p.name for p in root.iterdir()), ["dest", "src"])

    def test_excluded_names_are_not_copied(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            root = Path(td)
            src = root / "src"
            (src / ".git").mkdir(parents=True)
            (src / ".git" / "HEAD").write_text("ref", encoding="utf-8")
            (src / "SKILL.md").write_text("x", encoding="utf-8")

            _replace_directory(src, root / "dest")
            self.assertEqual(sorted(p.name for p in (root / "dest").iterdir()), ["SKILL.md"])


if __name__ == "__main__":
    unittest.main()
