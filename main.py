"""
CCAS Clinical Trend Engine — Main Entry Point

CLI orchestrator that wires all modules together.

Usage:
    python main.py generate [--patients N] [--visits N]
                                     Generate synthetic lab histories
    python main.py patients          List patient IDs in the data file
    python main.py assess --patient-id PAT-XXX [--specialty S ...]
                                     Run a full assessment for a patient
    python main.py quick --patient-id PAT-XXX
                                     Assessment with auto-detected specialties
    python main.py demo              Full pipeline: generate → quick-assess every patient
"""

import argparse
import json
import logging
import sys
from pathlib import Path

from config import (
    ASSESSMENT_OUTPUT_DIR,
    LOG_DATE_FORMAT,
    LOG_FORMAT,
    LOG_LEVEL,
    NUM_PATIENTS,
    PATIENT_DATA_PATH,
    VISITS_PER_PATIENT,
)


def setup_logging():
    """Configure production logging."""
    logging.basicConfig(
        level=LOG_LEVEL,
        format=LOG_FORMAT,
        datefmt=LOG_DATE_FORMAT,
        handlers=[logging.StreamHandler(sys.stdout)],
    )


def _build_orchestrator():
    from assessment.data_retriever import JsonDocumentStore
    from assessment.orchestrator import Orchestrator
    from consultation.consultant import build_consultant

    return Orchestrator(JsonDocumentStore(PATIENT_DATA_PATH), consultant=build_consultant())


def _require_patient(patient_id: str):
    from assessment.data_retriever import JsonDocumentStore

    if not PATIENT_DATA_PATH.exists():
        print(f"\n❌ No patient data found at {PATIENT_DATA_PATH}")
        print("   Run 'python main.py generate' or 'python main.py demo' first.")
        sys.exit(1)

    available = JsonDocumentStore(PATIENT_DATA_PATH).patient_ids()
    if patient_id not in available:
        print(f"\n❌ Patient '{patient_id}' not found.")
        if available:
            print(f"   Available patients: {', '.join(available[:10])}")
            print(f"\n   💡 Try: python main.py quick --patient-id {available[0]}")
        sys.exit(1)


def _save_assessment(result: dict, path=None) -> str:
    path = path or ASSESSMENT_OUTPUT_DIR / f"assessment_{result['case_id']}.json"
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w") as f:
        json.dump(result, f, indent=2, default=str)
    return str(path)


def _print_summary(result: dict):
    summary = result["summary"]
    findings = summary["clinical_findings"]
    analysis = findings.get("clinical_analysis") or {}

    print("\n" + "=" * 60)
    print(f"📋 CLINICAL ASSESSMENT — Patient {summary['patient_id']}")
    print(f"   Case:         {summary['case_id']}")
    print(f"   Significance: {analysis.get('clinical_significance', 'N/A')}")
    print(f"   Confidence:   {analysis.get('confidence_score', 0):.2f}")
    print("=" * 60)

    data = summary["data_summary"]
    print(f"\n📊 Data: {data['lab_types']} lab types, {data['conditions']} conditions, "
          f"{data['medications']} medications")

    print(f"\n🔴 Abnormal findings: {findings['abnormal_findings_count']}")
    for name, score in findings["risk_assessments"].items():
        print(f"   • {name}: {score}")

    print(f"\n🩺 Specialist consultations: {findings['specialist_consultations']}")
    for rec in summary["recommendations"]:
        print(f"   • {rec}")

    print("\n➡️  Next steps:")
    for step in summary["next_steps"]:
        print(f"   • {step}")
    print("=" * 60)


def cmd_generate(args):
    """Generate synthetic lab histories."""
    from data.generator import LabHistoryGenerator

    logger = logging.getLogger("main.generate")
    gen = LabHistoryGenerator(num_patients=args.patients, visits_per_patient=args.visits)
    patients = gen.generate()
    path = gen.save_json(patients)
    logger.info("✅ Lab histories generated: %d patients → %s", len(patients), path)


def cmd_patients(args):
    """List the patients available for assessment."""
    from assessment.data_retriever import JsonDocumentStore

    store = JsonDocumentStore(PATIENT_DATA_PATH)
    for pid in store.patient_ids():
        profile = store.fetch_demographics(pid).get("profile", "")
        print(f"   • {pid}  {profile}")


def cmd_assess(args):
    """Run a full assessment with explicit specialties."""
    logger = logging.getLogger("main.assess")
    _require_patient(args.patient_id)

    orchestrator = _build_orchestrator()
    result = orchestrator.start_assessment(args.patient_id, args.specialty or [])
    _print_summary(result)

    path = _save_assessment(result, args.output)
    logger.info("✅ Assessment saved to %s", path)


def cmd_quick(args):
    """Run an assessment with specialties detected from the patient's data."""
    logger = logging.getLogger("main.quick")
    _require_patient(args.patient_id)

    orchestrator = _build_orchestrator()
    result = orchestrator.quick_assessment(args.patient_id)
    print(f"\n🤖 {result['message']}: {', '.join(result['detected_specialties'])}")
    _print_summary(result)

    path = _save_assessment(result, args.output)
    logger.info("✅ Assessment saved to %s", path)


def cmd_demo(args):
    """Full demo pipeline: generate → quick-assess every patient."""
    print("\n" + "=" * 60)
    print("🏥 CCAS CLINICAL TREND ENGINE — FULL DEMO")
    print("=" * 60)

    print("\n📊 Step 1/2: Generating synthetic lab histories...")
    from data.generator import LabHistoryGenerator
    gen = LabHistoryGenerator()
    patients = gen.generate()
    gen.save_json(patients)
    print(f"   ✅ Generated histories for {len(patients)} patients\n")

    print("🔍 Step 2/2: Running quick assessments...")
    orchestrator = _build_orchestrator()
    for pid in sorted(patients):
        result = orchestrator.quick_assessment(pid)
        analysis = result["summary"]["clinical_findings"].get("clinical_analysis") or {}
        path = _save_assessment(result)
        print(f"   • {pid}: significance={analysis.get('clinical_significance', 'N/A')}, "
              f"specialties={', '.join(result['detected_specialties'])}")
        print(f"     📁 {path}")

    first = sorted(patients)[0]
    print(f"\n   💡 Try: python main.py assess --patient-id {first} --specialty Endocrinology")
    print("\n🏁 Demo complete!\n")


# ── Argument parser ───────────────────────────────────────────

def main():
    parser = argparse.ArgumentParser(
        description="CCAS Clinical Trend Engine CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py generate                                   Generate synthetic lab histories
  python main.py patients                                   List patient IDs
  python main.py assess --patient-id PAT-A1B2C3D4 --specialty Endocrinology --specialty Cardiology
  python main.py quick --patient-id PAT-A1B2C3D4            Auto-detect specialties
  python main.py demo                                       Generate + assess everyone
        """,
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # generate
    gen_parser = subparsers.add_parser("generate", help="Generate synthetic lab histories")
    gen_parser.add_argument("--patients", type=int, default=NUM_PATIENTS, help="Number of patients")
    gen_parser.add_argument("--visits", type=int, default=VISITS_PER_PATIENT, help="Visits per patient")

    # patients
    subparsers.add_parser("patients", help="List patients in the data file")

    # assess
    assess_parser = subparsers.add_parser("assess", help="Run a full assessment")
    assess_parser.add_argument("--patient-id", required=True, help="Patient ID to assess")
    assess_parser.add_argument(
        "--specialty", action="append",
        help="Consulting specialty (repeatable), e.g. Endocrinology",
    )
    assess_parser.add_argument("--output", type=Path, default=None, help="Output JSON path")

    # quick
    quick_parser = subparsers.add_parser("quick", help="Assessment with auto-detected specialties")
    quick_parser.add_argument("--patient-id", required=True, help="Patient ID to assess")
    quick_parser.add_argument("--output", type=Path, default=None, help="Output JSON path")

    # demo
    subparsers.add_parser("demo", help="Run full demo pipeline (generate → assess)")

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    setup_logging()

    commands = {
        "generate": cmd_generate,
        "patients": cmd_patients,
        "assess":   cmd_assess,
        "quick":    cmd_quick,
        "demo":     cmd_demo,
    }
    commands[args.command](args)


if __name__ == "__main__":
    main()
