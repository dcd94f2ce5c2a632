"""Prompt text and offline stand-ins for each generation-backed operation."""
from __future__ import annotations

import json
from typing import Any, Dict, List

from ..models.schemas import ChatMessage, Selection


def case_generation_prompt(selection: Selection) -> str:
    return (
        f"Create a realistic {selection.domain} training case for a medical student. "
        f'The underlying diagnosis is "{selection.disease_name}" ({selection.disease_rarity.value}). '
        "Return JSON with keys: rarity, patient {name, age, gender, occupation, background, "
        "initialEmotionalState}, presentingComplaint {chiefComplaint, historyOfPresentingIllness}, "
        "underlyingDiagnosis. Do not reveal the diagnosis in the presenting complaint."
    )


def simulated_case(selection: Selection) -> Dict[str, Any]:
    return {
        "rarity": selection.disease_rarity.value,
        "patient": {
            "name": "Alex Morgan",
            "age": 46,
            "gender": "Other",
            "occupation": "Teacher",
            "background": "No significant past medical history.",
            "initialEmotionalState": "Anxious",
        },
        "presentingComplaint": {
            "chiefComplaint": f"Symptoms under evaluation in {selection.domain.lower()} clinic.",
            "historyOfPresentingIllness": "Onset over the past week with gradual worsening.",
        },
        "underlyingDiagnosis": selection.disease_name,
    }


def chat_prompt(diagnosis: str, patient: Dict[str, Any], history: List[ChatMessage]) -> str:
    transcript = "\n".join(f"{message.sender}: {message.text}" for message in history)
    return (
        "You are role-playing a patient. Stay in character and never state your diagnosis.\n"
        f"Hidden diagnosis: {diagnosis}\nPatient profile: {json.dumps(patient, default=str)}\n"
        f"Conversation so far:\n{transcript}\n"
        'Reply as JSON: {"text": string, "emotionalState": string}.'
    )


def simulated_chat_reply() -> Dict[str, Any]:
    return {"text": "I'm not sure, doctor. It has been bothering me for a few days.", "emotionalState": "Worried"}


def feedback_prompt(diagnosis: str, submitted: str, reasoning: str, confidence: int) -> str:
    return (
        f"Correct diagnosis: {diagnosis}\nStudent diagnosis: {submitted} (confidence {confidence}%)\n"
        f"Student reasoning: {reasoning}\n"
        "Grade the attempt. Return JSON with keys: correctness (Correct|Partially Correct|Incorrect), "
        "reasoningAnalysis, whatWentWell[], areasForImprovement[], keyMissedClues[], "
        "finalDiagnosisExplanation, differentialDiagnosisAnalysis[]."
    )


def simulated_feedback(diagnosis: str, submitted: str) -> Dict[str, Any]:
    correct = diagnosis.strip().lower() == submitted.strip().lower()
    return {
        "correctness": "Correct" if correct else "Incorrect",
        "reasoningAnalysis": "Simulated review.",
        "whatWentWell": [],
        "areasForImprovement": [],
        "keyMissedClues": [],
        "finalDiagnosisExplanation": f"The diagnosis was {diagnosis}.",
        "differentialDiagnosisAnalysis": [],
    }


def investigation_prompt(diagnosis: str, test_name: str) -> str:
    return (
        f"A patient with {diagnosis} undergoes: {test_name}. "
        'Report a plausible result as JSON: {"testName", "result", "interpretation"}.'
    )


def simulated_investigation(test_name: str) -> Dict[str, Any]:
    return {"testName": test_name, "result": "Within normal limits.", "interpretation": "Simulated result."}


def guidance_prompt(diagnosis: str, question: str) -> str:
    return (
        f"You are a clinical tutor. The case diagnosis is {diagnosis}; do not reveal it.\n"
        f"Student question: {question}\n"
        'Answer as JSON: {"advice": string}.'
    )


def simulated_guidance() -> Dict[str, Any]:
    return {"advice": "Revisit the history and consider which investigations narrow your differential."}
