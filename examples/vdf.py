from typing import List, Optional
import attrs

from vdf_reader import Cursor, from_str, parse

# Reading a whole file into a tree.
with open('filename.vdf', 'r') as f:
	tree = parse(f)

block = tree.find_block('Block')  # Find specified block, or raise an exception.
block.find_key('value')  # Gives the *last* value if multiple.
block['value']  # The same.
block['notpresent', 'null']  # With two values, the second is a default.
block.get_all('value')  # Every value with this key, in order.
tree.lookup('Block.value.0')  # Repeated keys act like a list.
'value' in block
tree.as_dict()  # Nested dictionaries, the last value for each key is kept.

# Reading part of a large file, without building a tree.
cursor = Cursor.from_str(open('huge.vdf'))
for key in cursor:
	if key == 'wanted':
		with cursor.enter() as child:
			print(child.read_entry())
	# Anything else is skipped, only looking at braces.


# Deserialising into classes.
@attrs.frozen
class Weapon:
	name: str
	damage: int
	sounds: List[str] = attrs.field(metadata={'vdf_name': 'sound'})  # Consecutive repeated keys.
	model: Optional[str] = None


weapon = from_str('''
"name" "crowbar"
"damage" "25"
"sound" "hit1"
"sound" "hit2"
''', Weapon)
