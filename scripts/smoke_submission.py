#!/usr/bin/env python3
import argparse
import json
from pathlib import Path

import httpx


SAMPLE_PROFILE = {
    "organizationName": "Acme Robotics",
    "industries": ["robotics", "logistics"],
    "location": "Berlin, Germany",
    "fundingRounds": 2,
    "totalFunding": 4500000,
    "foundersCount": 2,
    "employeesCount": 18,
    "topInvestors": ["Seedcamp", "Point Nine"],
}


def main() -> None:
    parser = argparse.ArgumentParser(description="End-to-end smoke run against a live backend.")
    parser.add_argument("--api-base", default="http://127.0.0.1:8000", help="Backend base URL.")
    parser.add_argument("--username", required=True, help="Account email registered with the auth provider.")
    parser.add_argument("--password", required=True, help="Account password.")
    parser.add_argument("--profile", help="Optional JSON file with the profile to submit.")
    parser.add_argument("--timeout-seconds", type=int, default=90, help="Request timeout.")
    args = parser.parse_args()

    profile = SAMPLE_PROFILE
    if args.profile:
        profile = json.loads(Path(args.profile).expanduser().read_text(encoding="utf-8"))

    with httpx.Client(timeout=float(args.timeout_seconds), trust_env=False) as client:
        login_resp = client.post(
            f"{args.api_base}/api/login",
            json={"username": args.username, "password": args.password},
        )
        login_resp.raise_for_status()
        access_token = login_resp.json().get("accessToken")
        headers = {"Authorization": f"Bearer {access_token}"} if access_token else {}

        create_resp = client.post(f"{args.api_base}/api/startups/create", headers=headers)
        create_resp.raise_for_status()
        key = create_resp.json()["key"]
        print(f"created submission: {key}")

        submit_resp = client.post(f"{args.api_base}/api/startups/{key}", json=profile)
        if submit_resp.status_code >= 400:
            raise RuntimeError(f"Submission failed ({submit_resp.status_code}): {submit_resp.text}")

        fetched = client.get(f"{args.api_base}/api/startups/{key}").json()

    if fetched.get("status") != "analyzed":
        raise RuntimeError(f"Submission not analyzed: {fetched.get('analysisError')}")
    analysis = fetched.get("aiAnalysis") or {}
    print(f"investment potential: {analysis.get('investmentPotential')}")
    print(f"risk level: {analysis.get('riskLevel')}")
    print(f"scores: {json.dumps(analysis.get('scores'))}")
    print("submission smoke run passed")


if __name__ == "__main__":
    main()
