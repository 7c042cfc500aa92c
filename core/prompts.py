"""
Prompt templates for extraction, summarization, keyword analysis and synthesis.

Templates use `str.format` placeholders; literal braces in JSON examples are
doubled.
"""

from typing import Dict, List

PROMPTS: Dict[str, object] = {}

PROMPTS["DEFAULT_LANGUAGE"] = "English"
PROMPTS["DEFAULT_TUPLE_DELIMITER"] = "<|>"
PROMPTS["DEFAULT_RECORD_DELIMITER"] = "##"
PROMPTS["DEFAULT_COMPLETION_DELIMITER"] = "<|COMPLETE|>"
PROMPTS["DEFAULT_ENTITY_TYPES"] = ["organization", "person", "geo", "event"]

PROMPTS["fail_response"] = "Sorry, I'm not able to provide an answer to that question."

PROMPTS["entity_extraction"] = """-Goal-
Given a text document that is potentially relevant to this activity and a list of entity types, identify all entities of those types from the text and all relationships among the identified entities.
Use {language} as output language.

-Steps-
1. Identify all entities. For each identified entity, extract the following information:
- entity_name: Name of the entity, use same language as input text. If English, capitalize the name.
- entity_type: One of the following types: [{entity_types}]
- entity_description: Comprehensive description of the entity's attributes and activities
Format each entity as ("entity"{tuple_delimiter}<entity_name>{tuple_delimiter}<entity_type>{tuple_delimiter}<entity_description>)

2. From the entities identified in step 1, identify all pairs of (source_entity, target_entity) that are *clearly related* to each other.
For each pair of related entities, extract the following information:
- source_entity: name of the source entity, as identified in step 1
- target_entity: name of the target entity, as identified in step 1
- relationship_description: explanation as to why you think the source entity and the target entity are related to each other
- relationship_keywords: one or more high-level key words that summarize the overarching nature of the relationship, focusing on concepts or themes rather than specific details
- relationship_strength: a numeric score indicating strength of the relationship between the source entity and target entity
Format each relationship as ("relationship"{tuple_delimiter}<source_entity>{tuple_delimiter}<target_entity>{tuple_delimiter}<relationship_description>{tuple_delimiter}<relationship_keywords>{tuple_delimiter}<relationship_strength>)

3. Return output in {language} as a single list of all the entities and relationships identified in steps 1 and 2. Use **{record_delimiter}** as the list delimiter.

4. When finished, output {completion_delimiter}

######################
-Examples-
######################
{examples}

#############################
-Real Data-
######################
Entity_types: {entity_types}
Text: {input_text}
######################
Output:
"""

PROMPTS["entity_extraction_examples"] = [
    """Example 1:

Entity_types: [person, organization, geo, event]
Text:
At the annual summit in Geneva, Maria Lopez, chief economist of the Northwind Bank, announced a joint research program with the University of Lisbon.
################
Output:
("entity"{tuple_delimiter}"Maria Lopez"{tuple_delimiter}"person"{tuple_delimiter}"Maria Lopez is the chief economist of the Northwind Bank who announced a joint research program."){record_delimiter}
("entity"{tuple_delimiter}"Northwind Bank"{tuple_delimiter}"organization"{tuple_delimiter}"Northwind Bank is a bank whose chief economist is Maria Lopez."){record_delimiter}
("entity"{tuple_delimiter}"University of Lisbon"{tuple_delimiter}"organization"{tuple_delimiter}"The University of Lisbon is the research partner in the newly announced program."){record_delimiter}
("entity"{tuple_delimiter}"Geneva"{tuple_delimiter}"geo"{tuple_delimiter}"Geneva is the city hosting the annual summit."){record_delimiter}
("relationship"{tuple_delimiter}"Maria Lopez"{tuple_delimiter}"Northwind Bank"{tuple_delimiter}"Maria Lopez works as chief economist at the Northwind Bank."{tuple_delimiter}"employment, leadership"{tuple_delimiter}9){record_delimiter}
("relationship"{tuple_delimiter}"Northwind Bank"{tuple_delimiter}"University of Lisbon"{tuple_delimiter}"The bank and the university start a joint research program."{tuple_delimiter}"partnership, research"{tuple_delimiter}8){completion_delimiter}
#############################""",
    """Example 2:

Entity_types: [person, organization, geo, event]
Text:
The Harbor Festival was cancelled after a storm hit Port Elwood, the mayor Daniel Cho said on Friday.
################
Output:
("entity"{tuple_delimiter}"Harbor Festival"{tuple_delimiter}"event"{tuple_delimiter}"The Harbor Festival is an event in Port Elwood that was cancelled because of a storm."){record_delimiter}
("entity"{tuple_delimiter}"Port Elwood"{tuple_delimiter}"geo"{tuple_delimiter}"Port Elwood is a town hit by a storm."){record_delimiter}
("entity"{tuple_delimiter}"Daniel Cho"{tuple_delimiter}"person"{tuple_delimiter}"Daniel Cho is the mayor of Port Elwood."){record_delimiter}
("relationship"{tuple_delimiter}"Harbor Festival"{tuple_delimiter}"Port Elwood"{tuple_delimiter}"The Harbor Festival takes place in Port Elwood."{tuple_delimiter}"location, local event"{tuple_delimiter}7){record_delimiter}
("relationship"{tuple_delimiter}"Daniel Cho"{tuple_delimiter}"Port Elwood"{tuple_delimiter}"Daniel Cho is the mayor of Port Elwood."{tuple_delimiter}"governance"{tuple_delimiter}9){completion_delimiter}
#############################""",
]

PROMPTS["summarize_entity_descriptions"] = """You are a helpful assistant responsible for generating a comprehensive summary of the data provided below.
Given one or two entities, and a list of descriptions, all related to the same entity or group of entities.
Please concatenate all of these into a single, comprehensive description. Make sure to include information collected from all the descriptions.
If the provided descriptions are contradictory, please resolve the contradictions and provide a single, coherent summary.
Make sure it is written in third person, and include the entity names so we have the full context.
Use {language} as output language.

#######
-Data-
Entities: {entity_name}
Description List: {description_list}
#######
Output:
"""

PROMPTS["entity_continue_extraction"] = (
    "MANY entities were missed in the last extraction. Add them below using the same format:"
)

PROMPTS["entity_if_loop_extraction"] = (
    "It appears some entities may have still been missed. "
    "Answer YES | NO if there are still entities that need to be added."
)

PROMPTS["keywords_extraction"] = """---Role---

You are a helpful assistant tasked with identifying both high-level and low-level keywords in the user's query.
Use {language} as output language.

---Goal---

Given the query, list both high-level and low-level keywords. High-level keywords focus on overarching concepts or themes, while low-level keywords focus on specific entities, details, or concrete terms.

---Instructions---

- Output the keywords in JSON format.
- The JSON should have two keys:
  - "high_level_keywords" for overarching concepts or themes.
  - "low_level_keywords" for specific entities or details.

######################
-Examples-
######################
{examples}

#############################
-Real Data-
######################
Query: {query}
######################
The `Output` should be human text, not unicode characters. Keep the same language as `Query`.
Output:
"""

PROMPTS["keywords_extraction_examples"] = [
    """Example 1:

Query: "How does international trade influence global economic stability?"
################
Output:
{{
  "high_level_keywords": ["International trade", "Global economic stability", "Economic impact"],
  "low_level_keywords": ["Trade agreements", "Tariffs", "Currency exchange", "Imports", "Exports"]
}}
#############################""",
    """Example 2:

Query: "What are the environmental consequences of deforestation on biodiversity?"
################
Output:
{{
  "high_level_keywords": ["Environmental consequences", "Deforestation", "Biodiversity loss"],
  "low_level_keywords": ["Species extinction", "Habitat destruction", "Carbon emissions", "Rainforest", "Ecosystem"]
}}
#############################""",
    """Example 3:

Query: "What is the role of education in reducing poverty?"
################
Output:
{{
  "high_level_keywords": ["Education", "Poverty reduction", "Socioeconomic development"],
  "low_level_keywords": ["School access", "Literacy rates", "Job training", "Income inequality"]
}}
#############################""",
]

PROMPTS["rag_response"] = """---Role---

You are a helpful assistant responding to questions about data in the tables provided.

---Goal---

Generate a response of the target length and format that responds to the user's question, summarizing all information in the input data tables appropriate for the response length and format, and incorporating any relevant general knowledge.
If you don't know the answer, just say so. Do not make anything up.
Do not include information where the supporting evidence for it is not provided.

---Target response length and format---

{response_type}

---Data tables---

{context_data}

Add sections and commentary to the response as appropriate for the length and format. Style the response in markdown.
"""

PROMPTS["naive_rag_response"] = """---Role---

You are a helpful assistant responding to questions about documents provided.

---Goal---

Generate a response of the target length and format that responds to the user's question, summarizing all information in the input data tables appropriate for the response length and format, and incorporating any relevant general knowledge.
If you don't know the answer, just say so. Do not make anything up.
Do not include information where the supporting evidence for it is not provided.

---Target response length and format---

{response_type}

---Documents---

{content_data}

Add sections and commentary to the response as appropriate for the length and format. Style the response in markdown.
"""


def select_examples(examples: List[str], example_number=None) -> str:
    """Join the first example_number examples (all of them when unset)."""
    if example_number and example_number < len(examples):
        examples = examples[:example_number]
    return "\n".join(examples)
