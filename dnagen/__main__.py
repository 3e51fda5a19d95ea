from dnagen.pipeline import main

main()
