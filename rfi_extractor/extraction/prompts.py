"""
Extraction prompt template

Renders the fixed instruction template for one document. The wording and
the label taxonomy are owned by the analysts; the pipeline only relies on
the output shape described at the end of the template.
"""

from ..models.extraction_models import Unit

EXTRACTION_PROMPT_TEMPLATE = """You are an expert policy analyst specializing in AI governance, human-centered AI, and technology policy.

BACKGROUND:
You are analyzing a submission to a public Request for Information (RFI) on national AI R&D priorities.
Your task is to systematically extract the policy recommendations it makes.

DOCUMENT METADATA:
- Document ID: {doc_id}
- Organization Name: {org_name}

---
DOCUMENT TEXT:
{document_text}
---

INSTRUCTIONS:
1. Classify the submitting organization into exactly ONE organization type.
2. Identify each distinct policy recommendation in the document.
3. For each recommendation give a short title, a 3-6 sentence summary, and a 2-5 sentence justification
   (quote the submission where possible).
4. Assign 1-3 policy topics, ordered by relevance, each with a justification.
5. Identify 1-3 human-centered AI values, properties and purposes, each with a justification.

OUTPUT FORMAT:
Return ONLY valid JSON with no markdown formatting or additional explanation.

{{
  "doc_id": "{doc_id}",
  "org_name": "{org_name}",
  "org_type": "",
  "total_recommendations": N,
  "recommendations": [
    {{
      "id": 1,
      "recommendation": "",
      "summary": "",
      "justification": "",
      "topics": [{{"topic_id": 1, "topic": "", "topic_justification": ""}}],
      "hcai_values": [{{"value_id": 1, "value": "", "value_justification": ""}}],
      "hcai_properties": [{{"property_id": 1, "property": "", "property_justification": ""}}],
      "hcai_purposes": [{{"purpose_id": 1, "purpose": "", "purpose_justification": ""}}]
    }}
  ]
}}
"""


def build_extraction_prompt(unit: Unit) -> str:
    """Render the extraction prompt for one document"""
    return EXTRACTION_PROMPT_TEMPLATE.format(
        doc_id=unit.id,
        org_name=unit.organization or "Unknown",
        document_text=unit.payload,
    )
