"""
Integration tests for the complete FondCAS pipeline.
"""

import json
import pytest
import pandas as pd
import shutil
import tempfile
import sys
from pathlib import Path

# Add src to path
sys.path.append(str(Path(__file__).parent.parent))

from src.normalize.config import get_default_config, merge_configs
from src.pipeline.run_fondcas import ReconciliationPipeline, main

CASMB_CSV = """Lista furnizorilor CASMB
Nr. crt,Denumire furnizor,Adresa,Telefon,Specialitati
1,SC Clinica Sante SRL,"Str. Exemplu 10, Sector 2",0722 123 456,"Cardiologie; ORL"
2,S.C. Medis S.R.L.,"Bd. Unirii 5, bl. A2, Sector 3",,Pediatrie
3,12345,,,
"""

CASMB_UPDATE_CSV = """Denumire,Adresa,Email,Specialitate
Clinica Sante,"Strada Exemplu nr. 10, Sect. 2",office@sante.ro,Otorinolaringologie
Medis,,,Cardiologie pediatrica x
"""

ALLOCATIONS_CSV = """Denumire furnizor,Anul,Luna,Tip serviciu,Valoare contract,Consumat
Clinica Sante SRL,2025,3,clinic,10000,9200
Necunoscut SRL,2025,3,clinic,5000,100
"""


class TestReconciliationPipeline:
    """Integration tests for the complete pipeline."""

    def setup_method(self):
        """Setup test fixtures."""
        self.temp_dir = tempfile.mkdtemp()
        self.input_dir = Path(self.temp_dir) / "input"
        self.output_dir = Path(self.temp_dir) / "output"
        self.input_dir.mkdir()

        self.first = self.write("casmb.csv", CASMB_CSV)
        self.second = self.write("casmb_update.csv", CASMB_UPDATE_CSV)
        self.allocations = self.write("contracte.csv", ALLOCATIONS_CSV)

        self.config = merge_configs(get_default_config(), {
            "normalization": {"specialty": {"mapping_file": ""}},
        })

    def teardown_method(self):
        """Cleanup test fixtures."""
        shutil.rmtree(self.temp_dir)

    def write(self, name, content):
        path = self.input_dir / name
        path.write_text(content, encoding="utf-8")
        return str(path)

    def test_pipeline_initialization(self):
        """Test pipeline initialization."""
        pipeline = ReconciliationPipeline(config=self.config)
        assert pipeline.config == self.config
        assert pipeline.matcher is not None
        assert pipeline.loader is not None

    def test_full_run(self):
        """Test reconciliation across two files."""
        pipeline = ReconciliationPipeline(config=self.config)
        summary = pipeline.run([self.first, self.second], output_dir=str(self.output_dir),
                               allocation_paths=[self.allocations])

        assert summary["records"] == 5
        assert summary["outcomes"] == {"created": 2, "merged": 2, "skipped": 1}
        assert summary["catalogue"]["providers"] == 2
        assert summary["catalogue"]["multi_source"] == 2
        assert summary["allocations"] == 1
        assert summary["unresolved_allocations"] == 1
        assert summary["failed_files"] == []
        assert "matching" in summary["stage_times"]

    def test_outputs_written(self):
        """Test catalogue and maintenance reports are written."""
        pipeline = ReconciliationPipeline(config=self.config)
        pipeline.run([self.first, self.second], output_dir=str(self.output_dir),
                     allocation_paths=[self.allocations])

        providers = json.loads((self.output_dir / "providers.json").read_text(encoding="utf-8"))
        sante = [p for p in providers if p["name_key"] == "clinica sante"][0]
        assert sante["address_key"] == "exemplu-10-s2"
        assert sante["phone"] == "+40722123456"
        assert sante["email"] == "office@sante.ro"
        assert len(sante["source_ids"]) == 2
        assert len(sante["specialty_ids"]) == 2

        specialties = json.loads((self.output_dir / "specialties.json").read_text(encoding="utf-8"))
        assert "otorinolaringologie" in {s["name"] for s in specialties}

        match_log = pd.read_csv(self.output_dir / "match_log.csv")
        assert len(match_log) == 5

        unmapped = pd.read_csv(self.output_dir / "unmapped_specialties.csv")
        assert "cardiologie pediatrica x" in set(unmapped["label"])

        allocations = pd.read_csv(self.output_dir / "allocations.csv")
        assert list(allocations["provider_id"]) == [sante["provider_id"]]

    def test_bad_file_does_not_abort(self):
        """Test an unreadable input is reported and the run continues."""
        pipeline = ReconciliationPipeline(config=self.config)
        missing = str(self.input_dir / "missing.xlsx")
        summary = pipeline.run([missing, self.first])

        assert summary["failed_files"] == [missing]
        assert summary["catalogue"]["providers"] == 2

    def test_rerun_into_existing_index(self):
        """Test re-importing into the same index creates nothing new."""
        pipeline = ReconciliationPipeline(config=self.config)
        records, _ = pipeline.ingest([self.first, self.second])
        index, _ = pipeline.reconcile(records)

        _, report = pipeline.reconcile(records, index)

        assert report.created_provider_ids == []
        assert report.updated_provider_ids == []
        assert len(index) == 2


class TestCommandLine:
    """Integration tests for the command line entry point."""

    def setup_method(self):
        """Setup test fixtures."""
        self.temp_dir = Path(tempfile.mkdtemp())

    def teardown_method(self):
        """Cleanup test fixtures."""
        shutil.rmtree(self.temp_dir)

    def test_estimate_command(self, capsys):
        allocations = self.temp_dir / "allocations.csv"
        allocations.write_text(
            "provider_id,year,month,service_type,allocated_amount,consumed_amount,data_source\n"
            "PROV-1,2025,3,clinic,10000,1000,cas-b\n",
            encoding="utf-8",
        )
        reports = self.temp_dir / "reports.csv"
        reports.write_text(
            "provider_id,kind,reported_at,submitter_hash,comment\n"
            "PROV-1,funds_exhausted,2025-03-20T11:00:00Z,a,\n"
            "PROV-1,funds_exhausted,2025-03-20T10:30:00Z,b,\n"
            "PROV-1,funds_exhausted,2025-03-20T10:00:00Z,c,\n",
            encoding="utf-8",
        )

        main(["--config", str(self.temp_dir / "absent.yaml"), "estimate",
              "--allocations", str(allocations), "--reports", str(reports),
              "--provider", "PROV-1", "--now", "2025-03-20T12:00:00Z"])

        result = json.loads(capsys.readouterr().out)
        assert result["provider_id"] == "PROV-1"
        assert result["level"] == "uncertain"
        assert result["explanation"] == "allocation_and_reports"
        assert result["qualifying_reports"] == 3

    def test_suggest_command(self, capsys):
        candidates = self.temp_dir / "candidates.csv"
        candidates.write_text(
            "kind,id,name,subtitle\n"
            "specialty,s1,Cardiologie Pediatrică,\n"
            "specialty,s2,Cardiologie,\n"
            "specialty,s3,Dermatovenerologie,\n",
            encoding="utf-8",
        )

        main(["--config", str(self.temp_dir / "absent.yaml"), "suggest", "card",
              "--candidates", str(candidates)])

        result = json.loads(capsys.readouterr().out)
        assert [r["name"] for r in result] == ["Cardiologie", "Cardiologie Pediatrică"]
        assert all(r["score"] == 90.0 for r in result)

    def test_failure_exits_with_status_one(self):
        with pytest.raises(SystemExit) as excinfo:
            main(["--config", str(self.temp_dir / "absent.yaml"), "suggest", "card",
                  "--candidates", str(self.temp_dir / "absent.csv")])
        assert excinfo.value.code == 1


if __name__ == "__main__":
    pytest.main([__file__])
