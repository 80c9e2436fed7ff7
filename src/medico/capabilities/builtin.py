"""Built-in medical study and assist capabilities."""

from medico.capabilities.registry import CapabilityRegistry
from medico.capabilities.schema import (
    Schema,
    boolean,
    enum,
    integer,
    list_of,
    obj,
    string,
)
from medico.capabilities.types import (
    CachePolicy,
    CannedResponse,
    Capability,
    OutputMode,
    SessionPolicy,
    SimplifiedRetry,
)
from medico.llm.types import GenerationParams

DISCLAIMER = (
    "This information is for educational purposes only and is not a medical "
    "diagnosis. Please consult a qualified healthcare professional."
)

SUMMARIZE_NOTES = Capability(
    name="summarize_notes",
    description="Summarize study notes into a short summary and key points.",
    input_schema=Schema.of(
        string("notes", min_length=10, description="Raw notes to summarize."),
        enum("length", ("short", "medium", "long"), required=False, default="medium"),
    ),
    output_schema=Schema.of(
        string("summary", description="Summary of the notes."),
        list_of("key_points", string(), required=False),
    ),
    template="""\
You are a medical education assistant. Summarize the following notes for a
medical student. Target length: {{ length }}.

Notes:
{{ notes }}
""",
    params=GenerationParams(temperature=0.3),
    fallbacks=(
        SimplifiedRetry(
            template="Summarize these notes in a few sentences:\n{{ notes }}",
            params=GenerationParams(temperature=0.0),
        ),
    ),
)

STUDY_NOTES = Capability(
    name="study_notes",
    description="Generate concise study notes for a medical topic.",
    input_schema=Schema.of(
        string("topic", min_length=3, description="Medical topic, e.g. Thalassemia Major."),
    ),
    output_schema=Schema.of(
        string("notes", description="Study notes with headings and bullet points."),
        list_of("summary_points", string(), required=False),
    ),
    template="""\
You are an expert medical educator. Write concise, well-structured study notes
on the topic "{{ topic }}" for an undergraduate medical student. Use headings
and bullet points, and end with 3-5 key summary points for quick revision.
""",
    params=GenerationParams(temperature=0.4),
    cache=CachePolicy(ttl_seconds=3600, normalize=("topic",)),
)

MCQ_GENERATOR = Capability(
    name="mcq_generator",
    description="Generate multiple-choice questions for a medical topic.",
    input_schema=Schema.of(
        string("topic", min_length=3),
        integer("count", required=False, minimum=1, maximum=10, default=5),
    ),
    output_schema=Schema.of(
        list_of(
            "mcqs",
            obj(
                "",
                string("question"),
                list_of(
                    "options",
                    obj("", string("text"), boolean("is_correct")),
                    min_length=4,
                    max_length=4,
                ),
                string("explanation", required=False),
            ),
            min_length=1,
        ),
        string("topic_generated"),
    ),
    template="""\
Generate {{ count }} multiple-choice questions on "{{ topic }}" for a medical
student. Each question has exactly four options, exactly one of which is
correct, followed by a short explanation of the correct answer.
""",
    params=GenerationParams(temperature=0.6),
    cache=CachePolicy(ttl_seconds=600, normalize=("topic",)),
)

SYMPTOM_ANALYZER = Capability(
    name="symptom_analyzer",
    description="List differential considerations for described symptoms.",
    input_schema=Schema.of(
        string("symptoms", min_length=10),
        obj(
            "patient_context",
            integer("age", required=False, minimum=0),
            enum("sex", ("male", "female", "other"), required=False),
            string("history", required=False),
            required=False,
        ),
    ),
    output_schema=Schema.of(
        list_of(
            "diagnoses",
            obj(
                "",
                string("name"),
                enum("confidence", ("low", "medium", "high"), required=False),
                string("rationale", required=False),
            ),
        ),
        list_of(
            "suggested_investigations",
            obj("", string("name"), string("rationale", required=False)),
            required=False,
        ),
        list_of("suggested_management", string(), required=False),
        string("disclaimer", required=False),
    ),
    template="""\
You are a clinical decision support assistant for medical education.
Symptoms: {{ symptoms }}
{% if patient_context %}
Patient context:
{% if patient_context.age %}- Age: {{ patient_context.age }}
{% endif %}
{% if patient_context.sex %}- Sex: {{ patient_context.sex }}
{% endif %}
{% if patient_context.history %}- History: {{ patient_context.history }}
{% endif %}
{% endif %}
List the most likely differential diagnoses with a confidence and a short
rationale, suggested investigations and initial management considerations.
""",
    params=GenerationParams(temperature=0.3),
    fallbacks=(
        CannedResponse(
            value={
                "diagnoses": [],
                "disclaimer": (
                    "We could not analyze these symptoms right now. " + DISCLAIMER
                ),
            }
        ),
    ),
    cache=CachePolicy(ttl_seconds=900, normalize=("symptoms",)),
    output_defaults={"disclaimer": DISCLAIMER},
)

CHAT = Capability(
    name="chat",
    description="Conversational medical assistant.",
    input_schema=Schema.of(string("message", min_length=1)),
    output_schema=Schema.of(string("response")),
    template="""\
You are MediAssistant, a helpful and friendly AI medical assistant. Be
empathetic and professional. When the user describes symptoms, remind them
that you cannot diagnose and advise consulting a medical professional.

User: {{ message }}
""",
    params=GenerationParams(temperature=0.5),
    output_mode=OutputMode.JSON,
    text_field="response",
    fallbacks=(
        SimplifiedRetry(
            template="""\
You are a helpful medical assistant. Answer briefly in plain text.

User: {{ message }}
""",
            output_mode=OutputMode.TEXT,
        ),
        CannedResponse(
            value={
                "response": (
                    "I'm sorry, I encountered an issue trying to process that. "
                    "Could you please try rephrasing?"
                )
            }
        ),
    ),
)

DDX_TRAINER = Capability(
    name="ddx_trainer",
    description="Differential diagnosis practice with feedback on the student's attempt.",
    input_schema=Schema.of(
        string("symptoms", min_length=10),
        list_of("student_attempt", string(), required=False),
    ),
    output_schema=Schema.of(
        list_of("potential_diagnoses", string(), min_length=1),
        string("explanation"),
        string("feedback", required=False),
        boolean("is_completed"),
    ),
    template="""\
You are an AI medical education tool helping a student practice differential
diagnosis.
Clinical scenario: "{{ symptoms }}"
{% if summary %}
Progress so far: {{ summary }}
{% endif %}
{% if previous_output %}
Your previous answer: {{ previous_output.explanation }}
{% endif %}
{% if student_attempt %}
Student's differential diagnoses:
{% for item in student_attempt %}
- {{ item }}
{% endfor %}
Evaluate the attempt: highlight correct, missed and less likely diagnoses.
{% else %}
No attempt yet: list the potential diagnoses and the key distinguishing features.
{% endif %}
Set is_completed to true once the student has covered the key diagnoses.
""",
    params=GenerationParams(temperature=0.5),
    session=SessionPolicy(completion_field="is_completed", max_transcript_turns=6, id_prefix="ddx"),
)

CLINICAL_CASE = Capability(
    name="clinical_case",
    description="Interactive clinical case simulation, one step per turn.",
    input_schema=Schema.of(
        string("topic", required=False, min_length=3),
        string("user_response", required=False),
    ),
    output_schema=Schema.of(
        string("prompt", description="Next patient presentation step or question."),
        string("feedback", required=False),
        boolean("is_completed"),
        string("summary", required=False),
    ),
    template="""\
You are an AI tutor running a clinical case simulation for a medical student.
{% if turn_number and turn_number > 1 %}
Case {{ session_id }}, step {{ turn_number }}.
{% if summary %}
Case summary so far: {{ summary }}
{% endif %}
{% for turn in transcript %}
Tutor: {{ turn.output.prompt }}
Student: {{ turn.input.user_response | default("") }}
{% endfor %}
Student's latest response: {{ user_response }}
Give feedback on the response, then present the next step of the case.
{% else %}
New case on the topic: {{ topic }}.
Give the initial patient presentation and the first question. Set feedback to
null and is_completed to false.
{% endif %}
When the case has concluded set is_completed to true and write a summary.
Always update summary with a short recap of the case so far.
""",
    params=GenerationParams(temperature=0.6),
    session=SessionPolicy(
        completion_field="is_completed",
        summary_field="summary",
        max_transcript_turns=4,
        id_prefix="case",
    ),
)

VIRTUAL_ROUNDS = Capability(
    name="virtual_rounds",
    description="Virtual patient ward rounds driven by the student's actions.",
    input_schema=Schema.of(
        string("case_focus", required=False, min_length=3),
        string("user_action", required=False),
    ),
    output_schema=Schema.of(
        string("patient_summary"),
        string("current_observation"),
        string("next_step_prompt"),
        boolean("is_completed"),
    ),
    template="""\
You are the attending physician leading virtual ward rounds with a medical
student.
{% if previous_output %}
Patient: {{ previous_output.patient_summary }}
Last observation: {{ previous_output.current_observation }}
Student's action: {{ user_action }}
Describe what happens after the student's action and ask what they do next.
{% else %}
Introduce a new patient{% if case_focus %} focused on {{ case_focus }}{% endif %}
and ask the student what they would like to do first.
{% endif %}
Set is_completed to true when the patient has been fully worked up.
""",
    params=GenerationParams(temperature=0.6),
    session=SessionPolicy(
        completion_field="is_completed",
        summary_field="patient_summary",
        max_transcript_turns=2,
        id_prefix="rounds",
    ),
)

BUILTIN_CAPABILITIES: tuple[Capability, ...] = (
    SUMMARIZE_NOTES,
    STUDY_NOTES,
    MCQ_GENERATOR,
    SYMPTOM_ANALYZER,
    CHAT,
    DDX_TRAINER,
    CLINICAL_CASE,
    VIRTUAL_ROUNDS,
)


def register_builtin_capabilities(registry: CapabilityRegistry) -> None:
    """Register every built-in capability."""
    registry.register_all(BUILTIN_CAPABILITIES)
