"""
End-to-end runs of both provisioning entry points against in-memory fakes.
"""

import pytest
import requests

from conftest import FakeSession, FakeSystem, RecordingRunner, SleepRecorder
from desktop_provisioner.lib.manifests import load_product_manifest
from desktop_provisioner.lib.registry import is_installed
from desktop_provisioner.main import main_arcgis_pro, main_fme
from desktop_provisioner.state_store import load_state

SOURCE = "https://media.example.org/installers"

DOTNET_NAME = "Microsoft Windows Desktop Runtime - 8.0.11 (x64)"
ARCGIS_NAME = "ArcGIS Pro 3.4"
FME_NAME = "FME Form 2024.2.2.0 (win64)"


def _media(product_id, *, without=()):
    return {name: b"installer-bytes" for name in load_product_manifest(product_id).artifacts if name not in without}


def _simulate_installs(system):
    """Installing a package makes its uninstall entry appear."""

    def on_run(argv):
        joined = " ".join(argv)
        if "windowsdesktop-runtime" in joined:
            system.install(DOTNET_NAME)
        if "/i" in argv and any(a.endswith("ArcGISPro.msi") for a in argv):
            system.install(ARCGIS_NAME)
        if "fme-form" in joined:
            system.install(FME_NAME)

    return on_run


def _args(tmp_path, *extra):
    return [
        "--source",
        SOURCE,
        "--download-dir",
        str(tmp_path / "dl"),
        "--logs-dir",
        str(tmp_path / "logs"),
        "--retry-delay",
        "0",
        *extra,
    ]


def _summary(tmp_path, product_id):
    return load_state(str(tmp_path / "logs" / f"{product_id}-summary.json"))


@pytest.fixture
def system():
    return FakeSystem()


class TestArcGISPro:
    def test_fresh_install(self, tmp_path, system):
        runner = RecordingRunner(on_run=_simulate_installs(system))
        session = FakeSession(_media("arcgis_pro"))
        assert not is_installed(system, "ArcGIS Pro*")

        rc = main_arcgis_pro(_args(tmp_path), system=system, runner=runner, session=session, sleep=SleepRecorder())

        assert rc == 0
        assert is_installed(system, "ArcGIS Pro*")
        verbs = [call[1] if call[0] == "msiexec.exe" else "exe" for call in runner.calls]
        assert verbs == ["exe", "/i", "/update"]

        summary = _summary(tmp_path, "arcgis_pro")
        assert summary["execution"]["phase"] == "done"
        assert summary["probes"]["ArcGIS Pro"] == {"before": False, "after": True}
        assert summary["execution"]["skipped_steps"] == ["50_configure_license"]

    def test_unreachable_source_aborts_after_max_retries(self, tmp_path, system):
        runner = RecordingRunner()
        session = FakeSession(error=requests.Timeout("connect timed out"))
        sleeper = SleepRecorder()

        rc = main_arcgis_pro(
            _args(tmp_path, "--max-retries", "3"), system=system, runner=runner, session=session, sleep=sleeper
        )

        assert rc != 0
        assert len(session.calls) == 3
        assert sleeper.delays == [0, 0]
        assert runner.calls == []

        summary = _summary(tmp_path, "arcgis_pro")
        assert summary["execution"]["phase"] == "failed"
        assert summary["execution"]["errors"][0]["step"] == "10_fetch_artifacts"

    def test_missing_patch_is_skipped_with_warning(self, tmp_path, system):
        patch = load_product_manifest("arcgis_pro").patch.file
        runner = RecordingRunner(on_run=_simulate_installs(system))
        session = FakeSession(_media("arcgis_pro", without=[patch]))

        rc = main_arcgis_pro(_args(tmp_path), system=system, runner=runner, session=session, sleep=SleepRecorder())

        assert rc == 0
        assert not any("/update" in call for call in runner.calls)
        summary = _summary(tmp_path, "arcgis_pro")
        assert "40_apply_patch" in summary["execution"]["skipped_steps"]
        assert any(w.get("reason") == "patch_file_missing" for w in summary["execution"]["warnings"])

    def test_empty_patch_download_is_skipped(self, tmp_path, system):
        patch = load_product_manifest("arcgis_pro").patch.file
        runner = RecordingRunner({patch: 1620}, on_run=_simulate_installs(system))
        session = FakeSession({**_media("arcgis_pro"), patch: b""})

        rc = main_arcgis_pro(_args(tmp_path), system=system, runner=runner, session=session, sleep=SleepRecorder())

        assert rc == 0
        assert not any("/update" in call for call in runner.calls)
        summary = _summary(tmp_path, "arcgis_pro")
        assert patch not in summary["artifacts"]
        assert any(w.get("reason") == "patch_file_missing" for w in summary["execution"]["warnings"])

    def test_stale_patch_in_download_dir_is_not_applied(self, tmp_path, system):
        patch = load_product_manifest("arcgis_pro").patch.file
        stale = tmp_path / "dl" / patch
        stale.parent.mkdir(parents=True)
        stale.write_bytes(b"from-an-earlier-run")
        runner = RecordingRunner(on_run=_simulate_installs(system))
        session = FakeSession(_media("arcgis_pro", without=[patch]))

        rc = main_arcgis_pro(_args(tmp_path), system=system, runner=runner, session=session, sleep=SleepRecorder())

        assert rc == 0
        assert not any("/update" in call for call in runner.calls)

    def test_installer_failure_is_fatal(self, tmp_path, system):
        runner = RecordingRunner({"ArcGISPro.msi": 1603}, on_run=_simulate_installs(system))
        session = FakeSession(_media("arcgis_pro"))

        rc = main_arcgis_pro(_args(tmp_path), system=system, runner=runner, session=session, sleep=SleepRecorder())

        assert rc == 1
        assert not any("/update" in call for call in runner.calls)
        summary = _summary(tmp_path, "arcgis_pro")
        assert summary["execution"]["phase"] == "failed"
        error = summary["execution"]["errors"][0]
        assert error["step"] == "30_install_product"
        assert "1603" in error["error"]
        assert "ArcGISPro_install.log" in error["error"]

    def test_rerun_skips_installed_products(self, tmp_path):
        system = FakeSystem(native=[ARCGIS_NAME], wow64=[DOTNET_NAME])
        runner = RecordingRunner()
        session = FakeSession(_media("arcgis_pro"))

        rc = main_arcgis_pro(_args(tmp_path), system=system, runner=runner, session=session, sleep=SleepRecorder())

        assert rc == 0
        assert [call[1] for call in runner.calls] == ["/update"]
        summary = _summary(tmp_path, "arcgis_pro")
        assert {"20_install_prereqs", "30_install_product"} <= set(summary["execution"]["skipped_steps"])

    def test_reboot_pending_is_reported(self, tmp_path, system):
        runner = RecordingRunner({"ArcGISPro.msi": 3010}, on_run=_simulate_installs(system))
        session = FakeSession(_media("arcgis_pro"))

        rc = main_arcgis_pro(_args(tmp_path), system=system, runner=runner, session=session, sleep=SleepRecorder())

        assert rc == 0
        assert _summary(tmp_path, "arcgis_pro")["execution"]["reboot_required"] is True

    def test_property_override_reaches_msiexec(self, tmp_path, system):
        runner = RecordingRunner(on_run=_simulate_installs(system))
        session = FakeSession(_media("arcgis_pro"))

        rc = main_arcgis_pro(
            _args(tmp_path, "--property", r"INSTALLDIR=D:\ArcGIS\Pro", "--property", "software_class=Viewer"),
            system=system,
            runner=runner,
            session=session,
            sleep=SleepRecorder(),
        )

        assert rc == 0
        msi_call = next(call for call in runner.calls if "/i" in call)
        assert r"INSTALLDIR=D:\ArcGIS\Pro" in msi_call
        assert "software_class=Viewer" in msi_call
        assert "SOFTWARE_CLASS=Professional" not in msi_call

    def test_dry_run_touches_nothing(self, tmp_path, system):
        runner = RecordingRunner(on_run=_simulate_installs(system))
        session = FakeSession(_media("arcgis_pro"))

        rc = main_arcgis_pro(
            _args(tmp_path, "--dry-run"), system=system, runner=runner, session=session, sleep=SleepRecorder()
        )

        assert rc == 0
        assert session.calls == []
        assert len(runner.calls) == 3
        assert not is_installed(system, "ArcGIS Pro*")


class TestFMEForm:
    def test_floating_license(self, tmp_path, system):
        runner = RecordingRunner(on_run=_simulate_installs(system))
        session = FakeSession(_media("fme_form"))

        rc = main_fme(
            _args(
                tmp_path,
                "--configure-floating-license",
                "--license-server-host",
                "fmels.example.org",
                "--license-server-port",
                "27005",
            ),
            system=system,
            runner=runner,
            session=session,
            sleep=SleepRecorder(),
        )

        assert rc == 0
        assert system.env["SAFE_LICENSE_FILE"] == "27005@fmels.example.org"
        assert _summary(tmp_path, "fme_form")["license"]["value"] == "27005@fmels.example.org"

    def test_license_without_host_fails_before_side_effects(self, tmp_path, system):
        runner = RecordingRunner()
        session = FakeSession(_media("fme_form"))

        rc = main_fme(
            _args(tmp_path, "--configure-floating-license"),
            system=system,
            runner=runner,
            session=session,
            sleep=SleepRecorder(),
        )

        assert rc == 1
        assert session.calls == []
        assert runner.calls == []
        assert system.env == {}

    def test_installer_failure_is_tolerated(self, tmp_path, system):
        runner = RecordingRunner({"fme-form": 1603})
        session = FakeSession(_media("fme_form"))

        rc = main_fme(_args(tmp_path), system=system, runner=runner, session=session, sleep=SleepRecorder())

        assert rc == 0
        summary = _summary(tmp_path, "fme_form")
        assert summary["installs"][0]["tolerated"] is True
        assert summary["execution"]["phase"] == "done"

    def test_strict_policy_override(self, tmp_path, system):
        runner = RecordingRunner({"fme-form": 1603})
        session = FakeSession(_media("fme_form"))

        rc = main_fme(
            _args(tmp_path, "--exit-policy", "strict"),
            system=system,
            runner=runner,
            session=session,
            sleep=SleepRecorder(),
        )

        assert rc == 1

    def test_requires_elevation(self, tmp_path):
        system = FakeSystem(elevated=False)
        runner = RecordingRunner()
        session = FakeSession(_media("fme_form"))

        rc = main_fme(_args(tmp_path), system=system, runner=runner, session=session, sleep=SleepRecorder())

        assert rc == 1
        assert runner.calls == []

    def test_wrapper_command_line(self, tmp_path, system):
        runner = RecordingRunner(on_run=_simulate_installs(system))
        session = FakeSession(_media("fme_form"))

        main_fme(_args(tmp_path), system=system, runner=runner, session=session, sleep=SleepRecorder())

        (call,) = runner.calls
        assert call[0].endswith("fme-form-win-x64.exe")
        assert call[1].startswith("-d")
        assert call[2] == "-s"
        assert call[3].startswith("-sp/qn INSTALLLEVEL=3")
        assert 'INSTALLDIR="C:\\Program Files\\FME"' in call[3]


CUSTOM_MANIFEST = """\
product: custom_tool
name: Custom Tool
prereqs:
  - label: VC++ Runtime
    kind: exe
    file: vc_redist.x64.exe
    args: [/install, /quiet, /norestart]
    display_name: 'Microsoft Visual C++ 2015-2022*'
    exit_policy: tolerant
install:
  label: Custom Tool
  kind: msi
  file: custom.msi
  display_name: 'Custom Tool*'
"""


class TestManifestOverride:
    def test_tolerated_prerequisite_failure_is_a_warning(self, tmp_path, system):
        manifest = tmp_path / "custom.yaml"
        manifest.write_text(CUSTOM_MANIFEST, encoding="utf-8")

        def on_run(argv):
            if any(a.endswith("custom.msi") for a in argv):
                system.install("Custom Tool 1.0")

        runner = RecordingRunner({"vc_redist": 1603}, on_run=on_run)
        session = FakeSession({"vc_redist.x64.exe": b"exe", "custom.msi": b"msi"})

        rc = main_arcgis_pro(
            _args(tmp_path, "--manifest", str(manifest)),
            system=system,
            runner=runner,
            session=session,
            sleep=SleepRecorder(),
        )

        assert rc == 0
        summary = _summary(tmp_path, "custom_tool")
        assert summary["installs"][0]["tolerated"] is True
        assert {"step": "20_install_prereqs", "installer": "VC++ Runtime", "exit_code": 1603} in summary["execution"][
            "warnings"
        ]
        assert summary["execution"]["phase"] == "done"


class TestFatalConditionsExitOne:
    def test_non_yaml_config(self, tmp_path, system):
        config = tmp_path / "provision.json"
        config.write_text("{}", encoding="utf-8")
        session = FakeSession(_media("fme_form"))

        rc = main_fme(
            _args(tmp_path, "--config", str(config)),
            system=system,
            runner=RecordingRunner(),
            session=session,
            sleep=SleepRecorder(),
        )

        assert rc == 1
        assert session.calls == []

    def test_missing_config(self, tmp_path, system):
        rc = main_fme(
            _args(tmp_path, "--config", str(tmp_path / "absent.yaml")),
            system=system,
            runner=RecordingRunner(),
            session=FakeSession(),
            sleep=SleepRecorder(),
        )

        assert rc == 1

    def test_missing_manifest(self, tmp_path, system):
        runner = RecordingRunner()

        rc = main_arcgis_pro(
            _args(tmp_path, "--manifest", str(tmp_path / "absent.yaml")),
            system=system,
            runner=runner,
            session=FakeSession(),
            sleep=SleepRecorder(),
        )

        assert rc == 1
        assert runner.calls == []

    def test_installer_that_cannot_start(self, tmp_path, system):
        def missing_binary(argv, **kwargs):
            raise FileNotFoundError(2, "The system cannot find the file specified", argv[0])

        rc = main_arcgis_pro(
            _args(tmp_path),
            system=system,
            runner=missing_binary,
            session=FakeSession(_media("arcgis_pro")),
            sleep=SleepRecorder(),
        )

        assert rc == 1
        error = _summary(tmp_path, "arcgis_pro")["execution"]["errors"][0]
        assert error["step"] == "20_install_prereqs"
        assert "Could not launch" in error["error"]

    def test_negative_retry_delay(self, tmp_path, system):
        session = FakeSession(_media("arcgis_pro"))

        rc = main_arcgis_pro(
            _args(tmp_path, "--retry-delay", "-1"),
            system=system,
            runner=RecordingRunner(),
            session=session,
            sleep=SleepRecorder(),
        )

        assert rc == 1
        assert session.calls == []
